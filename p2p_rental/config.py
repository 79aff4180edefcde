import os
from dotenv import load_dotenv
load_dotenv()


def _flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URI", "sqlite:///p2p_rental.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")

    # External payment service (charges the fees due at request time)
    PAYMENT_API_URL = os.getenv("PAYMENT_API_URL", "http://localhost:5002")
    PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", 10))

    # Inspection photo storage
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
    UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "/uploads")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Off: every inspection uses the front/right/left/rear set
    CATEGORY_INSPECTION_ANGLES = _flag("CATEGORY_INSPECTION_ANGLES")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    PAYMENT_API_URL = "http://payments.test"
    CATEGORY_INSPECTION_ANGLES = False

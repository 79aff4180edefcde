import logging

from flask import Flask
from flask_cors import CORS

from .models.models import db
from .services.images import LocalImageStore
from .services.payments import HttpPaymentCollector
from .services.session import SessionRegistry
from .services.store import SqlBookingStore


def create_app(config_object="p2p_rental.config.Config"):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    CORS(app, origins=app.config["CORS_ORIGINS"], supports_credentials=True)
    db.init_app(app)

    # Collaborators of the booking core; tests swap these out
    app.extensions["rental_sessions"] = SessionRegistry()
    app.extensions["booking_store_factory"] = lambda: SqlBookingStore(db.session)
    app.extensions["payment_collector"] = HttpPaymentCollector(
        app.config["PAYMENT_API_URL"], app.config["PAYMENT_TIMEOUT_SECONDS"]
    )
    app.extensions["image_store"] = LocalImageStore(app.config["UPLOAD_FOLDER"], app.config["UPLOAD_BASE_URL"])

    # Register Blueprints
    from .routes.routes import rental_bp
    app.register_blueprint(rental_bp)

    with app.app_context():
        db.create_all()

    return app

"""Storage for inspection photos: give it an upload, get back a stable URL."""
import io
import logging
import os
from abc import ABC, abstractmethod

import shortuuid
from PIL import Image, UnidentifiedImageError

from p2p_rental.errors import ImageUploadError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 2048
JPEG_QUALITY = 85


class ImageStore(ABC):

    @abstractmethod
    def upload(self, file) -> str:
        """Store an uploaded image and return its URL"""


class LocalImageStore(ImageStore):
    """Writes re-encoded JPEGs to a folder served under base_url"""

    def __init__(self, upload_folder: str, base_url: str = '/uploads'):
        self._upload_folder = upload_folder
        self._base_url = base_url.rstrip('/')

    def upload(self, file) -> str:
        if file is None or getattr(file, 'filename', '') == '':
            raise ImageUploadError('No file selected')

        data = file.read()
        try:
            image = Image.open(io.BytesIO(data))
            image.verify()
            # verify() leaves the image unusable, reopen to convert
            image = Image.open(io.BytesIO(data)).convert('RGB')
        except (UnidentifiedImageError, OSError) as e:
            logger.error(f"Rejected upload {file.filename}: {str(e)}")
            raise ImageUploadError('File is not a valid image') from e

        image.thumbnail((MAX_DIMENSION, MAX_DIMENSION))
        filename = f"{shortuuid.uuid()}.jpg"
        os.makedirs(self._upload_folder, exist_ok=True)
        image.save(os.path.join(self._upload_folder, filename), format='JPEG', quality=JPEG_QUALITY)

        logger.info(f"Stored image {filename} from {file.filename}")
        return f"{self._base_url}/{filename}"

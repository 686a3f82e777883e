import logging
import time
from io import BytesIO

import requests
from flask import current_app
from PIL import Image as PILImage, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFoundError, UpstreamError, ValidationError
from models import Image, db
from storage import StorageError

logger = logging.getLogger(__name__)

PROMPT_SNIPPET_LENGTH = 100


class GeneratorError(Exception):
    """Raised when the external generator does not return an image."""


class GeneratorClient:
    """HTTP client for the external text-to-image service."""

    def __init__(self, base_url, timeout=300, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, prompt):
        """
        Ask the generator for an image.

        Args:
            prompt: Free-text description of the image

        Returns:
            bytes: Raw image payload

        Raises:
            GeneratorError: on transport errors, non-2xx responses or an empty body
        """
        url = f"{self.base_url}/generate"
        logger.info(f"Calling generator at {url}")
        try:
            response = self.session.post(
                url,
                json={'prompt': prompt},
                headers={'ngrok-skip-browser-warning': 'true'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GeneratorError(f"Generator request failed: {str(e)}") from e

        if not response.ok:
            raise GeneratorError(f"Generator API error: {response.status_code}")
        if not response.content:
            raise GeneratorError("Generator returned an empty body")

        logger.info(f"Generator returned {len(response.content)} bytes")
        return response.content


def identify_image(data):
    """
    Identify an image payload with Pillow.

    Returns:
        tuple: (content_type, extension)

    Raises:
        ValueError: if the bytes are not a readable image
    """
    try:
        with PILImage.open(BytesIO(data)) as img:
            img.verify()
            image_format = img.format
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Payload is not a valid image: {str(e)}") from e

    content_type = PILImage.MIME.get(image_format, 'application/octet-stream')
    extension = 'jpg' if image_format == 'JPEG' else image_format.lower()
    return content_type, extension


def _timestamp_ms():
    return int(time.time() * 1000)


def generate_image(user_id, prompt):
    """
    Generate an image for a user, store it and record it.

    Returns:
        Image: the persisted image row
    """
    config = current_app.config
    storage = current_app.extensions['storage']
    generator = current_app.extensions['generator']
    bucket = config['IMAGES_BUCKET']

    logger.info(f"[Generate Image] User {user_id} generating with prompt: {prompt[:PROMPT_SNIPPET_LENGTH]!r}")

    try:
        image_data = generator.generate(prompt)
        content_type, extension = identify_image(image_data)
    except (GeneratorError, ValueError) as e:
        logger.error(f"[Generate Image] Generator failure: {str(e)}")
        raise UpstreamError('Failed to generate image', details=str(e))

    file_path = f"generated/{user_id}_{_timestamp_ms()}_generated.{extension}"
    try:
        storage.upload(bucket, file_path, image_data, content_type=content_type, upsert=False)
        image_url = storage.get_public_url(bucket, file_path)
    except StorageError as e:
        logger.error(f"[Generate Image] Storage upload error: {str(e)}")
        raise UpstreamError('Failed to generate image', details=str(e))

    image = Image(user_id=user_id, prompt=prompt, image_url=image_url, file_path=file_path)
    try:
        db.session.add(image)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[Generate Image] Database save error: {str(e)}", exc_info=True)
        _discard_object(storage, bucket, file_path)
        raise UpstreamError('Failed to generate image', details=str(e))

    logger.info(f"[Generate Image] Success for user {user_id}: {image_url}")

    current_app.extensions['activity_logger'].log(
        user_id, 'generate', image.id, {'prompt': prompt[:PROMPT_SNIPPET_LENGTH]}
    )
    return image


def _discard_object(storage, bucket, path):
    try:
        storage.remove(bucket, [path])
    except StorageError as e:
        logger.error(f"Could not remove orphaned object {bucket}/{path}: {str(e)}")


def list_user_images(user_id):
    return Image.query.filter_by(user_id=user_id).order_by(Image.created_at.desc()).all()


def delete_image(user_id, image_id):
    """Delete an image owned by user_id. Ownership is enforced by the lookup filter."""
    storage = current_app.extensions['storage']
    bucket = current_app.config['IMAGES_BUCKET']

    image = Image.query.filter_by(id=image_id, user_id=user_id).first()
    if image is None:
        logger.info(f"Image {image_id} not found or not owned by user {user_id}")
        raise NotFoundError('Image does not exist or does not belong to you.', success=False)

    image_url = image.image_url
    if image.file_path:
        try:
            storage.remove(bucket, [image.file_path])
            logger.info(f"Deleted {image.file_path} from storage")
        except StorageError as e:
            # The row is still removed so it does not become undeletable
            logger.error(f"Storage delete error: {str(e)}")

    try:
        Image.query.filter_by(id=image_id, user_id=user_id).delete()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Database delete error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to delete image.', details=str(e), success=False)

    logger.info(f"[Delete Image] User {user_id} deleted image {image_id} successfully")
    current_app.extensions['activity_logger'].log(user_id, 'delete', image_id, {'imageUrl': image_url})


def validate_prompt(payload):
    prompt = payload.get('prompt')
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError('Prompt is required')
    return prompt.strip()

import logging
import time

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from errors import NotFoundError, UpstreamError, ValidationError
from image_service import identify_image
from models import User, db, utcnow
from storage import StorageError

logger = logging.getLogger(__name__)


def get_profile(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found.')
    return user


def upload_avatar(user_id, file):
    """
    Store an uploaded avatar and return its public URL.

    Args:
        user_id: Owner of the avatar
        file: werkzeug FileStorage from the multipart body

    Returns:
        str: public URL of the stored avatar
    """
    data = file.read()
    if not data:
        raise ValidationError('Avatar file is empty.')
    try:
        content_type, extension = identify_image(data)
    except ValueError as e:
        raise ValidationError('Avatar must be an image file.', details=str(e))

    filename = secure_filename(file.filename or '') or f"avatar.{extension}"
    file_path = f"{user_id}/{int(time.time() * 1000)}_{filename}"
    bucket = current_app.config['AVATARS_BUCKET']
    storage = current_app.extensions['storage']

    logger.info(f"Received avatar for user {user_id} ({len(data)} bytes)")
    try:
        storage.upload(bucket, file_path, data, content_type=file.mimetype or content_type)
        avatar_url = storage.get_public_url(bucket, file_path)
    except StorageError as e:
        logger.error(f"Avatar upload error: {str(e)}")
        raise UpstreamError('Failed to update profile', details=str(e))

    logger.info(f"New avatar URL: {avatar_url}")
    return avatar_url


def update_profile(user_id, name=None, bio=None, avatar=None):
    """Update the provided profile fields; the avatar URL changes only when a new file is sent."""
    user = get_profile(user_id)

    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError('Name cannot be empty.')
    avatar_url = upload_avatar(user_id, avatar) if avatar is not None else None

    if name is not None:
        user.full_name = name
    if bio is not None:
        user.bio = bio
    if avatar_url:
        user.avatar_url = avatar_url
    user.updated_at = utcnow()

    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Profile update error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to update profile', details=str(e))
    return user

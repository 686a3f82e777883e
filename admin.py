import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from auth import admin_required
from errors import NotFoundError, UpstreamError
from models import Image, User, db, utcnow
from pagination import build_pagination, page_offset, parse_pagination
from storage import StorageError

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

RECENT_WINDOW = timedelta(days=30)


def escape_like(text):
    """Escape LIKE wildcards so the text matches literally."""
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def search_users(page, limit, search=None):
    """
    Page through users, newest first, optionally filtered by a
    case-insensitive substring of the name or email.

    Returns:
        tuple: (users, total_matching)
    """
    query = User.query
    if search:
        pattern = f"%{escape_like(search)}%"
        query = query.filter(or_(
            User.full_name.ilike(pattern, escape='\\'),
            User.email.ilike(pattern, escape='\\'),
        ))
    total = query.count()
    offset = page_offset(page, limit, total)
    if offset is None:
        return [], total
    users = (
        query.order_by(User.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return users, total


def collect_stats():
    since = utcnow() - RECENT_WINDOW
    return {
        'totalUsers': User.query.count(),
        'totalImages': Image.query.count(),
        'newUsers': User.query.filter(User.created_at >= since).count(),
        'recentImages': Image.query.filter(Image.created_at >= since).count(),
    }


def delete_user_cascade(user_id):
    """
    Remove a user's stored objects, image rows and finally the user row.
    Only a failure on the user row itself is raised.
    """
    storage = current_app.extensions['storage']
    config = current_app.config

    if db.session.get(User, user_id) is None:
        raise NotFoundError('User not found')

    file_paths = [path for (path,) in db.session.query(Image.file_path).filter_by(user_id=user_id) if path]
    if file_paths:
        try:
            storage.remove(config['IMAGES_BUCKET'], file_paths)
            logger.info(f"Removed {len(file_paths)} image objects for user {user_id}")
        except StorageError as e:
            logger.error(f"Failed to remove image objects for user {user_id}: {str(e)}")

    try:
        avatar_paths = storage.list_paths(config['AVATARS_BUCKET'], f"{user_id}/")
        if avatar_paths:
            storage.remove(config['AVATARS_BUCKET'], avatar_paths)
    except StorageError as e:
        logger.error(f"Failed to remove avatar objects for user {user_id}: {str(e)}")

    try:
        removed = Image.query.filter_by(user_id=user_id).delete()
        db.session.commit()
        logger.info(f"Deleted {removed} image rows for user {user_id}")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to delete image rows for user {user_id}: {str(e)}")

    try:
        User.query.filter_by(id=user_id).delete()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Delete user error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to delete user', details=str(e))

    logger.info(f"User {user_id} deleted successfully")


@admin_bp.route('/users', methods=['GET'])
@admin_required
def list_users():
    page, limit = parse_pagination(request.args, default_limit=10)
    search = request.args.get('search', '').strip()

    try:
        users, total = search_users(page, limit, search)
    except SQLAlchemyError as e:
        logger.error(f"Get users error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to fetch users', details=str(e))

    logger.info(f"Retrieved {len(users)} users")
    return jsonify({
        'success': True,
        'users': [user.to_dict() for user in users],
        'pagination': build_pagination(page, limit, total, 'totalUsers'),
    })


@admin_bp.route('/stats', methods=['GET'])
@admin_required
def stats():
    try:
        data = collect_stats()
    except SQLAlchemyError as e:
        logger.error(f"Get stats error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to fetch stats', details=str(e))
    return jsonify({'success': True, 'stats': data})


@admin_bp.route('/users/<user_id>', methods=['GET'])
@admin_required
def user_detail(user_id):
    try:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        images = Image.query.filter_by(user_id=user_id).order_by(Image.created_at.desc()).all()
    except SQLAlchemyError as e:
        logger.error(f"Get user details error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to fetch user details', details=str(e))

    logger.info(f"Retrieved user {user_id} with {len(images)} images")
    return jsonify({
        'success': True,
        'user': user.to_dict(),
        'images': [image.to_dict() for image in images],
    })


@admin_bp.route('/users/<user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    delete_user_cascade(user_id)
    return jsonify({'success': True, 'message': 'User and all associated data deleted successfully'})

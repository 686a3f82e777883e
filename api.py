import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from activity import activities_table_exists, list_activities
from auth import (
    INVALID_CREDENTIALS,
    change_password,
    create_token,
    current_user_id,
    encode_text,
    login_required,
    register_user,
    verify_user,
)
from errors import AuthenticationError, UpstreamError, ValidationError
from image_service import delete_image, generate_image, list_user_images, validate_prompt
from models import ACTIVITY_ACTIONS
from pagination import build_pagination, parse_pagination
from profiles import get_profile, update_profile

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


def json_body():
    """Return the JSON object body of the request, or {} when there is none."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object.')
    return payload


def _required_strings(payload, *names):
    values = [payload.get(name) for name in names]
    if not all(isinstance(v, str) and v.strip() for v in values):
        return None
    for value in values:
        encode_text(value)
    return values


# --- Auth ---

@api_bp.route('/auth/register', methods=['POST'])
def register():
    """User registration."""
    values = _required_strings(json_body(), 'fullName', 'email', 'password')
    if values is None:
        raise ValidationError('Please provide full name, email and password.')
    full_name, email, password = values

    user = register_user(full_name, email, password)
    return jsonify({
        'message': 'Account created successfully!',
        'user': {'id': user.id, 'email': user.email, 'full_name': user.full_name},
    }), 201


@api_bp.route('/auth/login', methods=['POST'])
def login():
    """User login."""
    values = _required_strings(json_body(), 'email', 'password')
    if values is None:
        raise ValidationError('Email and password are required.')
    email, password = values

    try:
        user = verify_user(email, password)
    except SQLAlchemyError as e:
        logger.error(f"[/api/auth/login] Error: {str(e)}", exc_info=True)
        raise UpstreamError('Server error during login.', details=str(e))
    if user is None:
        raise AuthenticationError(INVALID_CREDENTIALS)

    logger.info(f"User {user.id} logged in")
    return jsonify({
        'token': create_token(user),
        'user': {
            'id': user.id,
            'fullName': user.full_name,
            'email': user.email,
            'avatarUrl': user.avatar_url,
            'role': user.role,
        },
    })


# --- Images ---

@api_bp.route('/generate-image', methods=['POST'])
@login_required
def generate():
    prompt = validate_prompt(json_body())
    image = generate_image(current_user_id(), prompt)
    return jsonify({
        'success': True,
        'imageUrl': image.image_url,
        'imageId': image.id,
        'message': 'Image generated successfully',
    })


@api_bp.route('/my-creations', methods=['GET'])
@login_required
def my_creations():
    try:
        images = list_user_images(current_user_id())
    except SQLAlchemyError as e:
        logger.error(f"[/api/my-creations] Error: {str(e)}", exc_info=True)
        raise UpstreamError('Failed to fetch creations.', details=str(e))
    return jsonify([image.to_dict() for image in images])


@api_bp.route('/images/<image_id>', methods=['DELETE'])
@login_required
def remove_image(image_id):
    delete_image(current_user_id(), image_id)
    return jsonify({'success': True, 'message': 'Image deleted successfully!'})


# --- Profile ---

@api_bp.route('/profile', methods=['GET'])
@login_required
def profile():
    return jsonify(get_profile(current_user_id()).to_profile())


@api_bp.route('/profile', methods=['PATCH'])
@login_required
def edit_profile():
    """Update name/bio and optionally the avatar (multipart field 'avatar')."""
    if request.mimetype == 'multipart/form-data' or request.form:
        fields = request.form
    else:
        fields = json_body()

    name = fields.get('name')
    bio = fields.get('bio')
    if (name is not None and not isinstance(name, str)) or (bio is not None and not isinstance(bio, str)):
        raise ValidationError('Name and bio must be strings.')
    for text in (name, bio):
        if text is not None:
            encode_text(text)

    avatar = request.files.get('avatar')
    if avatar is not None and not avatar.filename:
        avatar = None

    user = update_profile(current_user_id(), name=name, bio=bio, avatar=avatar)
    return jsonify({'success': True, 'profile': user.to_dict()})


@api_bp.route('/change-password', methods=['PATCH'])
@login_required
def update_password():
    values = _required_strings(json_body(), 'currentPassword', 'newPassword')
    if values is None:
        raise ValidationError('Please provide your current password and a new password.')
    current_password, new_password = values

    change_password(current_user_id(), current_password, new_password)
    return jsonify({'success': True, 'message': 'Password changed successfully!'})


# --- Activities ---

@api_bp.route('/test-activities', methods=['GET'])
@login_required
def test_activities():
    """Diagnostic: report whether the activities table is provisioned."""
    try:
        exists = activities_table_exists()
    except SQLAlchemyError as e:
        logger.error(f"Test activities error: {str(e)}", exc_info=True)
        raise UpstreamError('Database connection issue', details=str(e), success=False)

    if not exists:
        logger.error("Activities table test failed: table not found")
        raise UpstreamError(
            'Activities table not found',
            details='relation "activities" does not exist',
            suggestion='Create the activities table (run the app once with AUTO_CREATE_TABLES=true or apply the schema migration)',
            success=False,
        )
    return jsonify({'success': True, 'message': 'Activities table is ready', 'tableExists': True})


@api_bp.route('/activities', methods=['GET'])
@login_required
def activities():
    user_id = current_user_id()
    page, limit = parse_pagination(request.args, default_limit=20)
    action = request.args.get('action', '').strip() or None

    items, total = list_activities(user_id, page, limit, action=action)
    return jsonify({
        'success': True,
        'activities': [item.to_dict() for item in items],
        'pagination': build_pagination(page, limit, total, 'totalActivities'),
    })


@api_bp.route('/activities/log', methods=['POST'])
@login_required
def log_activity():
    """Record a client-side action such as a download."""
    payload = json_body()
    action = payload.get('action')
    if not action:
        raise ValidationError('Action is required')
    if action not in ACTIVITY_ACTIONS:
        raise ValidationError(f"Unknown action '{action}'", details=list(ACTIVITY_ACTIONS))

    image_id = payload.get('imageId')
    if image_id is not None and not isinstance(image_id, str):
        image_id = str(image_id)
    additional_data = payload.get('additionalData') or {}
    if not isinstance(additional_data, dict):
        raise ValidationError('additionalData must be an object')

    current_app.extensions['activity_logger'].log(current_user_id(), action, image_id, additional_data)
    return jsonify({'success': True, 'message': 'Activity logged successfully'})

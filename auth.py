import logging
import re
from functools import wraps

import bcrypt
import jwt
from flask import current_app, g, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from models import ROLE_ADMIN, User, db, utcnow

logger = logging.getLogger(__name__)

SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
_SPECIAL_CHARACTER_RE = re.compile('[' + re.escape(SPECIAL_CHARACTERS) + ']')
_UPPERCASE_RE = re.compile('[A-Z]')

PASSWORD_RULES = (
    ('minLength', lambda p: len(p) >= 8, 'Password must be at least 8 characters long'),
    ('hasUppercase', lambda p: bool(_UPPERCASE_RE.search(p)), 'Password must contain at least 1 uppercase letter'),
    ('hasSpecialChar', lambda p: bool(_SPECIAL_CHARACTER_RE.search(p)),
     'Password must contain at least 1 special character (!@#$%^&*)'),
)

INVALID_CREDENTIALS = 'Invalid credentials.'

# bcrypt only reads the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


def validate_password(password):
    """
    Check a password against the strength policy.

    Returns:
        list: one message per failed rule; empty when the password is valid
    """
    return [message for _, check, message in PASSWORD_RULES if not check(password)]


def encode_text(value, field='Input'):
    """
    Encode a request string as UTF-8.

    Raises:
        ValidationError: if the string holds unpaired surrogates
    """
    try:
        return value.encode('utf-8')
    except UnicodeEncodeError:
        raise ValidationError(f'{field} contains invalid characters.')


def _password_bytes(password):
    return encode_text(password, 'Password')[:BCRYPT_MAX_BYTES]


def hash_password(password, rounds=None):
    """Hash a password using bcrypt."""
    if rounds is None:
        rounds = current_app.config['BCRYPT_ROUNDS']
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def verify_password(password, password_hash):
    """Verify a password against its hash."""
    password_bytes = _password_bytes(password)
    try:
        return bcrypt.checkpw(password_bytes, password_hash.encode('utf-8'))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def normalize_email(email):
    return email.strip().lower()


def register_user(full_name, email, password):
    """Register a new user."""
    errors = validate_password(password)
    if errors:
        raise ValidationError('Password does not meet the security requirements', details=errors)

    email = normalize_email(email)
    if User.query.filter_by(email=email).first():
        raise ValidationError('Email already exists.')

    user = User(full_name=full_name.strip(), email=email, hashed_password=hash_password(password))
    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        db.session.rollback()
        raise ValidationError('Email already exists.')
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error creating user: {str(e)}", exc_info=True)
        raise UpstreamError('Registration failed due to a server error.', details=str(e))

    logger.info(f"Registered user {user.id}")
    return user


def verify_user(email, password):
    """Verify user credentials."""
    user = User.query.filter_by(email=normalize_email(email)).first()
    if user and verify_password(password, user.hashed_password):
        return user
    return None


def change_password(user_id, current_password, new_password):
    errors = validate_password(new_password)
    if errors:
        raise ValidationError('New password does not meet the security requirements', details=errors)

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found.')

    if not verify_password(current_password, user.hashed_password):
        raise ValidationError('Current password is incorrect.')

    user.hashed_password = hash_password(new_password)
    user.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error changing password for user {user_id}: {str(e)}", exc_info=True)
        raise UpstreamError('Password change failed due to a server error.', details=str(e))

    logger.info(f"User {user_id} changed password successfully")


def create_token(user):
    """Issue a signed session token for a user."""
    config = current_app.config
    now = utcnow()
    claims = {
        'userId': user.id,
        'email': user.email,
        'role': user.role,
        'iat': now,
        'exp': now + config['JWT_EXPIRES_IN'],
    }
    return jwt.encode(claims, config['JWT_SECRET'], algorithm=config['JWT_ALGORITHM'])


def decode_token(token):
    """
    Verify a session token's signature and expiry.

    Raises:
        jwt.PyJWTError: if the token is invalid or expired
    """
    config = current_app.config
    return jwt.decode(
        token,
        config['JWT_SECRET'],
        algorithms=[config['JWT_ALGORITHM']],
        options={'require': ['exp', 'userId']},
    )


def _bearer_token():
    auth_header = request.headers.get('Authorization', '')
    scheme, _, token = auth_header.partition(' ')
    if scheme != 'Bearer' or not token.strip():
        raise AuthenticationError('Not authenticated, no token provided.')
    return token.strip()


def _authenticate():
    token = _bearer_token()
    try:
        claims = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError('Not authenticated, token has expired.')
    except jwt.PyJWTError as e:
        logger.info(f"Token verification failed: {str(e)}")
        raise AuthenticationError('Not authenticated, token is invalid.')
    g.user = claims
    return claims


def is_admin(user):
    """Admin rights come from the stored role or the ADMIN_EMAILS list."""
    if user is None:
        return False
    if user.role == ROLE_ADMIN:
        return True
    return user.email.lower() in current_app.config['ADMIN_EMAILS']


def login_required(f):
    """Decorator to require a valid bearer token for a route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _authenticate()
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require a bearer token carrying admin rights."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        claims = _authenticate()
        # Stored role, not the role claim baked into the token
        if not is_admin(db.session.get(User, claims['userId'])):
            logger.warning(f"User {claims.get('userId')} denied admin access")
            raise AuthorizationError('Access denied. Admin privileges required.')
        return f(*args, **kwargs)
    return decorated_function


def current_user_id():
    """Get the user id of the authenticated request."""
    return g.user['userId']

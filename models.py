import uuid
from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ACTIVITY_ACTIONS = ('generate', 'delete', 'download', 'view', 'edit')
ROLE_USER = 'user'
ROLE_ADMIN = 'admin'


def utcnow():
    """Naive UTC timestamp, comparable across SQLite and Postgres columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return str(uuid.uuid4())


def _isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    """Registered account"""
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    hashed_password = db.Column(db.String(255), nullable=False)
    bio = db.Column(db.Text, nullable=True)
    avatar_url = db.Column(db.String(1024), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    images = db.relationship('Image', backref='user', lazy=True)

    def to_dict(self):
        """Serialize every column except the password hash."""
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'bio': self.bio,
            'avatar_url': self.avatar_url,
            'role': self.role,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }

    def to_profile(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'bio': self.bio,
            'avatar_url': self.avatar_url,
            'created_at': _isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.email}>'


class Image(db.Model):
    """Generated image stored in the images bucket"""
    __tablename__ = 'images'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    prompt = db.Column(db.Text, nullable=False)
    image_url = db.Column(db.String(1024), nullable=False)
    file_path = db.Column(db.String(1024), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'prompt': self.prompt,
            'image_url': self.image_url,
            'file_path': self.file_path,
            'created_at': _isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Image {self.id} by User {self.user_id}>'


class Activity(db.Model):
    """Append-only audit record. image_id is not a foreign key so it may outlive the image."""
    __tablename__ = 'activities'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False, index=True)
    image_id = db.Column(db.String(36), nullable=True)
    timestamp = db.Column(db.DateTime, default=utcnow, index=True)
    additional_data = db.Column(db.JSON, nullable=False, default=dict)

    image = db.relationship(
        'Image',
        primaryjoin='foreign(Activity.image_id) == Image.id',
        viewonly=True,
        lazy='joined',
    )

    def to_dict(self):
        image = None
        if self.image is not None:
            image = {
                'id': self.image.id,
                'prompt': self.image.prompt,
                'image_url': self.image.image_url,
            }
        return {
            'id': self.id,
            'action': self.action,
            'image_id': self.image_id,
            'timestamp': _isoformat(self.timestamp),
            'additional_data': self.additional_data or {},
            'images': image,
        }

    def __repr__(self):
        return f'<Activity {self.action} by User {self.user_id}>'

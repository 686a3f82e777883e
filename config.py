import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def _env_list(name, default=''):
    return [item.strip().lower() for item in os.getenv(name, default).split(',') if item.strip()]


class Config:
    # Session tokens
    JWT_SECRET = os.getenv('JWT_SECRET', 'dev-jwt-secret-change-in-production')
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES_IN = timedelta(days=1)
    BCRYPT_ROUNDS = 12

    # Managed Postgres connection string (e.g. the pooler URL of the hosted project)
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///dreamina.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _env_flag('AUTO_CREATE_TABLES', 'True')

    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB max request body

    # S3-compatible object storage
    STORAGE_ENDPOINT = os.getenv('STORAGE_ENDPOINT')
    STORAGE_REGION = os.getenv('STORAGE_REGION', 'us-east-1')
    STORAGE_ACCESS_KEY_ID = os.getenv('STORAGE_ACCESS_KEY_ID')
    STORAGE_SECRET_ACCESS_KEY = os.getenv('STORAGE_SECRET_ACCESS_KEY')
    STORAGE_PUBLIC_URL = os.getenv('STORAGE_PUBLIC_URL')
    IMAGES_BUCKET = os.getenv('IMAGES_BUCKET', 'images')
    AVATARS_BUCKET = os.getenv('AVATARS_BUCKET', 'avatars')

    # External image generator
    GENERATOR_API_URL = os.getenv('GENERATOR_API_URL', 'http://localhost:7860')
    GENERATOR_TIMEOUT = int(os.getenv('GENERATOR_TIMEOUT', 300))

    # Emails granted admin rights in addition to users with role 'admin'
    ADMIN_EMAILS = _env_list('ADMIN_EMAILS')

    CORS_ORIGINS = _env_list('CORS_ORIGINS', 'http://localhost:5173')

    ACTIVITY_LOG_ASYNC = _env_flag('ACTIVITY_LOG_ASYNC', 'True')
    ACTIVITY_LOG_WORKERS = int(os.getenv('ACTIVITY_LOG_WORKERS', 2))

    MAX_PAGE_SIZE = 100

    # Server
    PORT = int(os.getenv('PORT', 8787))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    DEBUG = _env_flag('DEBUG', 'False')
    BEHIND_PROXY = _env_flag('BEHIND_PROXY', 'False')


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    AUTO_CREATE_TABLES = True
    JWT_SECRET = 'test-jwt-secret'
    BCRYPT_ROUNDS = 4
    STORAGE_ENDPOINT = None
    ADMIN_EMAILS = []
    ACTIVITY_LOG_ASYNC = False

import logging
from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Error rendered as a JSON body with an `error` field."""
    status_code = 500

    def __init__(self, message, status_code=None, details=None, suggestion=None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        self.suggestion = suggestion
        self.extra = extra

    def to_dict(self):
        body = dict(self.extra)
        body['error'] = self.message
        if self.details is not None:
            body['details'] = self.details
        if self.suggestion is not None:
            body['suggestion'] = self.suggestion
        return body


class ValidationError(APIError):
    status_code = 400


class AuthenticationError(APIError):
    status_code = 401


class AuthorizationError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class UpstreamError(APIError):
    """Database, storage or generator failure; details carry the underlying message."""
    status_code = 500


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def handle_api_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message} ({e.details})")
        else:
            logger.info(f"{type(e).__name__} {e.status_code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'error': e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Log all unexpected exceptions."""
        logger.error(f"EXCEPTION OCCURRED: {type(e).__name__}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error', 'details': str(e)}), 500

"""
WSGI entry point for production deployment.
Use this with gunicorn, uwsgi, or other WSGI servers.
"""
import logging
import os

# Configure logging
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

logger.info("=" * 80)
logger.info("WSGI ENTRY POINT LOADING")
logger.info("=" * 80)
logger.info(f"PORT environment variable: {os.getenv('PORT', 'Not set')}")

from app import create_app

app = create_app()

logger.info("Flask app created successfully")
logger.info("=" * 80)

if __name__ == "__main__":
    logger.info("Running app directly (not via gunicorn)")
    app.run(host='0.0.0.0', port=app.config['PORT'])

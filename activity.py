import logging
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from errors import UpstreamError
from models import Activity, db, utcnow
from pagination import page_offset

logger = logging.getLogger(__name__)


class ActivityLogger:
    """
    Best-effort writer for the activities table.

    Inserts run on a small thread pool inside their own app context so the
    request that triggered them never waits on, or fails because of, the
    audit log. With async disabled the insert runs inline but failures are
    still swallowed.
    """

    def __init__(self, app=None):
        self.app = None
        self.executor = None
        self.run_async = True
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.run_async = app.config.get('ACTIVITY_LOG_ASYNC', True)
        if self.run_async:
            self.executor = ThreadPoolExecutor(
                max_workers=app.config.get('ACTIVITY_LOG_WORKERS', 2),
                thread_name_prefix='activity-log',
            )
        app.extensions['activity_logger'] = self

    def log(self, user_id, action, image_id=None, additional_data=None):
        """Record an activity. Never raises."""
        args = (user_id, action, image_id, dict(additional_data or {}), utcnow())
        if not self.run_async:
            self._write(*args)
            return None
        try:
            return self.executor.submit(self._write_in_context, *args)
        except RuntimeError as e:
            logger.error(f"Activity logger is shut down, dropping {action} for user {user_id}: {str(e)}")
            return None

    def _write_in_context(self, *args):
        with self.app.app_context():
            self._write(*args)

    def _write(self, user_id, action, image_id, additional_data, timestamp):
        try:
            db.session.add(Activity(
                user_id=user_id,
                action=action,
                image_id=image_id,
                additional_data=additional_data,
                timestamp=timestamp,
            ))
            db.session.commit()
            logger.info(f"Activity logged: {action} for user {user_id}")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error logging activity: {str(e)}")
            if 'activities' in str(e):
                logger.error("Activities table may not exist. Please check your database setup.")
        except Exception as e:
            logger.error(f"Error in activity logger: {type(e).__name__}: {str(e)}", exc_info=True)

    def shutdown(self, wait=True):
        if self.executor is not None:
            self.executor.shutdown(wait=wait)


def activities_table_exists():
    return inspect(db.engine).has_table(Activity.__tablename__)


def list_activities(user_id, page, limit, action=None):
    """
    Return one page of a user's activities, newest first.

    Returns:
        tuple: (activities, total_count)
    """
    query = Activity.query.filter_by(user_id=user_id)
    if action:
        query = query.filter_by(action=action)

    try:
        total = query.count()
        offset = page_offset(page, limit, total)
        activities = [] if offset is None else (
            query.order_by(Activity.timestamp.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Get activities error: {str(e)}", exc_info=True)
        raise UpstreamError(
            'Failed to fetch activities',
            details=str(e),
            suggestion='Make sure the activities table exists in your database',
        )

    logger.info(f"Retrieved {len(activities)} activities for user {user_id}")
    return activities, total

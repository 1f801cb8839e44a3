"""
Bounded retry for transient storage failures.

Only connection loss, deadlocks and lock timeouts (SQLAlchemy OperationalError
or an invalidated connection) are retried. Business outcomes such as
SlotConflict are raised straight through.
"""

import functools
import logging
import time

from sqlalchemy.exc import DBAPIError, OperationalError

from ..config import STORAGE_RETRY_ATTEMPTS, STORAGE_RETRY_DELAY
from ..errors import StorageUnavailable

logger = logging.getLogger(__name__)


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def retry_on_transient(method=None, *, max_retries: int = None, retry_delay: float = None):
    """Retry a service method with exponential backoff.

    The wrapped method must belong to an object exposing ``self.db``. The
    session is rolled back whenever the call fails, and before every new
    attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            attempts = max_retries if max_retries is not None else STORAGE_RETRY_ATTEMPTS
            delay = retry_delay if retry_delay is not None else STORAGE_RETRY_DELAY
            for attempt in range(attempts):
                try:
                    return func(self, *args, **kwargs)
                except DBAPIError as e:
                    self.db.rollback()
                    if not is_transient(e):
                        raise
                    logger.warning(
                        f"🔄 Retry {attempt + 1}/{attempts} for {func.__qualname__}: {e.__class__.__name__}"
                    )
                    if attempt == attempts - 1:
                        logger.error(f"❌ All retries failed for {func.__qualname__}: {e}")
                        raise StorageUnavailable(
                            "Storage is temporarily unavailable, please try again"
                        ) from e
                except Exception:
                    # Failed unit of work: discard whatever was staged
                    self.db.rollback()
                    raise
                # Exponential backoff
                time.sleep(delay * (2**attempt))
            raise StorageUnavailable("Storage is temporarily unavailable, please try again")

        return wrapper

    if method is not None:
        return decorator(method)
    return decorator

"""
Transaction Helper Service

Wraps service operations in a database transaction:
- Commit on success, rollback on any failure
- Business rule violations propagate immediately
- Retry logic for dropped connections
"""

from functools import wraps
from typing import Callable
import logging
import time
from sqlalchemy.exc import OperationalError, DisconnectionError
from app import db
from exceptions import STMSError

logger = logging.getLogger(__name__)

class TransactionHelper:
    """Helper class for managing database transactions safely"""

    @staticmethod
    def with_transaction(func: Callable) -> Callable:
        """
        Decorator that wraps a function in a database transaction.
        Commits when the function returns, rolls back when it raises and
        retries when the database connection drops mid-operation.

        Usage:
            @TransactionHelper.with_transaction
            def start_trip(self, trip_id, actual_start):
                # Your database operations here
                pass
        """
        @wraps(func)
        def wrapper(*args, **kwargs):
            max_retries = 3
            for attempt in range(max_retries):
                try:
                    result = func(*args, **kwargs)
                    db.session.commit()
                    return result

                except STMSError:
                    db.session.rollback()
                    raise

                except (OperationalError, DisconnectionError) as e:
                    db.session.rollback()
                    logger.error(f"Transaction error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {str(e)}")

                    if attempt < max_retries - 1:
                        time.sleep(0.5 * (2 ** attempt))
                        continue
                    logger.error(f"Transaction failed after {max_retries} attempts: {str(e)}")
                    raise

                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Transaction error in {func.__name__}: {str(e)}")
                    raise
            return None
        return wrapper

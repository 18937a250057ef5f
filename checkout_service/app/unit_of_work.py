from contextlib import contextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .errors import InternalError

log = structlog.get_logger().bind(component="unit_of_work")


class UnitOfWork:
    """Runs an operation inside one DB transaction, retrying version conflicts."""

    def __init__(self, session_factory, max_retries: int = 3):
        self.session_factory = session_factory
        self.max_retries = max_retries

    @contextmanager
    def session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run(self, operation, *args, **kwargs):
        """Calls ``operation(db, *args, **kwargs)`` and commits its work.

        A StaleDataError means another writer updated the same order after
        it was loaded; the whole operation is rolled back and replayed
        against fresh state.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.session() as db:
                    return operation(db, *args, **kwargs)
            except StaleDataError:
                log.warning("version_conflict_retry", attempt=attempt, operation=operation.__name__)
            except SQLAlchemyError as exc:
                log.error("storage_failure", operation=operation.__name__, error=str(exc))
                raise InternalError("Storage failure") from exc
        raise InternalError("Order was modified concurrently; retries exhausted")

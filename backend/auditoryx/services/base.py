# backend/auditoryx/services/base.py
"""
Shared plumbing for ledger services.

Services own the transaction boundary. Writes to versioned rows (bookings and
user progress) go through ``retry_on_conflict`` so a lost compare-and-swap is
re-read and re-applied instead of surfacing as a 500.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Tuple, Type, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.exceptions import ConcurrencyConflictException, ServiceException
from ..database import retry_delay
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """Holds the session and a per-class logger."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Usage:
            with self.transaction():
                self.db.add(entity)
                # commit is handled automatically
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except StaleDataError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}")
        except Exception as e:
            self.logger.error(f"Unexpected error in transaction: {str(e)}")
            self.db.rollback()
            raise

    def retry_on_conflict(
        self,
        resource: str,
        resource_id: str,
        operation: Callable[[], T],
        *,
        conflict_errors: Tuple[Type[BaseException], ...] = (StaleDataError,),
    ) -> T:
        """
        Run ``operation`` and commit, retrying when the optimistic write loses a race.

        ``operation`` must re-read everything it depends on; each attempt starts
        from a rolled-back session. Gives up after
        ``settings.ledger_conflict_max_attempts`` with ConcurrencyConflictException.
        """
        max_attempts = settings.ledger_conflict_max_attempts
        attempt = 1
        while True:
            try:
                result = operation()
                self.db.commit()
                if attempt > 1:
                    prometheus_metrics.record_ledger_conflict(resource, "recovered")
                return result
            except conflict_errors as exc:
                self.db.rollback()
                if attempt >= max_attempts:
                    prometheus_metrics.record_ledger_conflict(resource, "exhausted")
                    self.logger.error(
                        "Ledger conflict retries exhausted",
                        extra={
                            "resource": resource,
                            "resource_id": resource_id,
                            "attempts": attempt,
                            "error": str(exc),
                        },
                    )
                    raise ConcurrencyConflictException(
                        resource,
                        resource_id,
                        attempts=attempt,
                        retry_after=settings.conflict_retry_after_seconds,
                    ) from exc
                delay = retry_delay(attempt)
                self.logger.warning(
                    "Ledger write conflict, retrying",
                    extra={
                        "resource": resource,
                        "resource_id": resource_id,
                        "attempt": attempt,
                        "delay": delay,
                        "error_type": type(exc).__name__,
                    },
                )
                time.sleep(delay)
                attempt += 1
            except Exception:
                self.db.rollback()
                raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("award_xp")
            def award_xp(self, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                error_type = None

                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            f"Slow ledger operation: {operation_name} {elapsed:.2f}s"
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="error" if error_type else "success",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

# backend/carebridge/services/base.py
"""
Base class for the CareBridge coordinators.

A service owns its session's transaction boundaries. Repositories only
flush; a service wraps each group of conditional writes in transaction(),
which commits on success and rolls back on any exception, including the
ConflictException a service raises when a conditional update matched zero
rows.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit the block, or roll it back and re-raise.

        Usage:
            with self.transaction():
                if not self.booking_repository.claim_provider(...):
                    raise BookingConflictException(...)

        Database errors surface as ServiceException; everything else
        propagates unchanged.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a public coordinator method and export the result to Prometheus.

        Usage:
            @BaseService.measure_operation("refund")
            def refund(self, booking_id, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                start_time = time.perf_counter()
                error_type = None

                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - start_time
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )
                    try:
                        prometheus_metrics.record_service_operation(
                            service=self.__class__.__name__,
                            operation=operation_name,
                            duration=elapsed,
                            status="error" if error_type else "success",
                            error_type=error_type,
                        )
                    except Exception as metrics_error:
                        logger.debug(f"Metrics recording failed: {metrics_error}")

            wrapper._operation_name = operation_name  # type: ignore[attr-defined]
            return cast(F, wrapper)

        return decorator

    @staticmethod
    def utcnow() -> datetime:
        return datetime.now(timezone.utc)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def record_conflict(self, resource: str, operation: str, **context: Any) -> None:
        """Log and count a conditional update that matched zero rows."""
        self.logger.info(
            f"Conditional update lost on {resource}.{operation}",
            extra={"resource": resource, "operation": operation, **context},
        )
        prometheus_metrics.record_conflict(resource, operation)

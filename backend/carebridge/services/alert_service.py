# backend/carebridge/services/alert_service.py
"""
Operational alerts for states that need a human.

A reconciliation alert means money moved at the gateway but the local record
of it did not persist. Every channel is attempted independently; none of
them may raise back into the caller.
"""

import logging
from typing import Optional

from ..core.exceptions import CriticalReconciliationError
from ..database import SessionFactory, SessionLocal, get_db_session
from ..models.monitoring import AlertHistory
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..monitoring.sentry import capture_reconciliation_alert

logger = logging.getLogger(__name__)

RECONCILIATION_ALERT_TYPE = "critical_reconciliation"


class AlertService:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal
        self.logger = logging.getLogger(self.__class__.__name__)

    def raise_reconciliation_alert(self, error: CriticalReconciliationError) -> None:
        self.logger.critical(
            f"RECONCILIATION REQUIRED: {error.message}",
            extra={"alert_type": RECONCILIATION_ALERT_TYPE, **error.details},
        )
        prometheus_metrics.record_reconciliation_alert(RECONCILIATION_ALERT_TYPE)

        try:
            capture_reconciliation_alert(error.message, error.details)
        except Exception as exc:
            self.logger.error(f"Failed to send reconciliation alert to Sentry: {exc}")

        try:
            with get_db_session(self._session_factory) as db:
                db.add(
                    AlertHistory(
                        alert_type=RECONCILIATION_ALERT_TYPE,
                        severity="critical",
                        title=f"Reconciliation required for booking {error.booking_id}",
                        message=error.message[:1000],
                        details=error.details,
                    )
                )
        except Exception as exc:
            self.logger.error(f"Failed to persist reconciliation alert: {exc}")

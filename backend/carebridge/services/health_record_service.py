# backend/carebridge/services/health_record_service.py
"""
Capture vitals from a completed visit into the patient's health metrics.

The service report stays on the booking regardless of what happens here,
so callers treat a failure as loggable rather than fatal.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..database import SessionFactory, SessionLocal, get_db_session
from ..models.health_metric import HealthMetric

logger = logging.getLogger(__name__)

BOOKING_SOURCE = "BOOKING"

# report key -> (metric type, unit)
_SIMPLE_VITALS: Dict[str, Tuple[str, str]] = {
    "heart_rate": ("HEART_RATE", "bpm"),
    "temperature": ("TEMPERATURE", "celsius"),
    "oxygen_saturation": ("OXYGEN", "%"),
    "blood_sugar": ("BLOOD_SUGAR", "mg/dL"),
}


def extract_vitals(report: Dict[str, Any]) -> List[Tuple[str, Decimal, str]]:
    """Map a service report's vitals to (metric_type, value, unit) rows."""
    vitals = report.get("vitals_checked") or {}
    rows: List[Tuple[str, Decimal, str]] = []

    blood_pressure = vitals.get("blood_pressure")
    if blood_pressure:
        systolic, _, diastolic = str(blood_pressure).partition("/")
        if systolic.strip():
            rows.append(("BP_SYSTOLIC", Decimal(systolic.strip()), "mmHg"))
        if diastolic.strip():
            rows.append(("BP_DIASTOLIC", Decimal(diastolic.strip()), "mmHg"))

    for key, (metric_type, unit) in _SIMPLE_VITALS.items():
        value = vitals.get(key)
        if value:
            rows.append((metric_type, Decimal(str(value)), unit))
    return rows


class HealthRecordService:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal
        self.logger = logging.getLogger(self.__class__.__name__)

    def capture_vitals(
        self,
        patient_id: str,
        booking_id: str,
        report: Dict[str, Any],
        provider_id: str,
    ) -> int:
        rows = extract_vitals(report)
        if not rows:
            return 0

        with get_db_session(self._session_factory) as db:
            db.add_all(
                [
                    HealthMetric(
                        patient_id=patient_id,
                        booking_id=booking_id,
                        provider_id=provider_id,
                        metric_type=metric_type,
                        value=value,
                        unit=unit,
                        source=BOOKING_SOURCE,
                    )
                    for metric_type, value, unit in rows
                ]
            )

        self.logger.info(
            "Health metrics captured from booking",
            extra={"booking_id": booking_id, "patient_id": patient_id, "metrics_count": len(rows)},
        )
        return len(rows)

# backend/carebridge/services/collaborators.py
"""
Contracts the transaction core depends on.

The default implementations live next to this module and persist through
their own sessions, so a collaborator failure never poisons the caller's
transaction. Tests substitute fakes that satisfy the same protocols.
"""

from typing import Any, Dict, Optional, Protocol, Sequence

from ..core.exceptions import CriticalReconciliationError


class AccessGrantClient(Protocol):
    def grant_access(
        self,
        *,
        patient_id: str,
        provider_id: str,
        booking_id: str,
        resources: Sequence[str],
        access_level: str,
        reason: Optional[str] = None,
    ) -> str:
        """Grant access and return the grant id. Raises on failure."""
        ...

    def revoke_booking_access(
        self,
        booking_id: str,
        revoked_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        """Revoke every active grant tied to the booking and return how many."""
        ...


class NotificationClient(Protocol):
    def notify(self, recipient_id: str, type: str, payload: Dict[str, Any]) -> None:
        """Fire and forget. Implementations must not raise."""
        ...


class HealthRecordClient(Protocol):
    def capture_vitals(
        self,
        patient_id: str,
        booking_id: str,
        report: Dict[str, Any],
        provider_id: str,
    ) -> int:
        """Persist vitals from a service report and return how many metrics were stored."""
        ...


class AlertClient(Protocol):
    def raise_reconciliation_alert(self, error: CriticalReconciliationError) -> None:
        """Escalate for manual reconciliation. Implementations must not raise."""
        ...

# backend/carebridge/repositories/factory.py
"""
Repository constructors keyed by aggregate.

Services build every repository they need from their own session here, so a
coordinator and its repositories always share one transaction.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .access_grant_repository import AccessGrantRepository
    from .application_repository import ApplicationRepository
    from .booking_repository import BookingRepository
    from .duty_repository import DutyRepository
    from .service_catalog_repository import ServiceCatalogRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_service_catalog_repository(db: Session) -> "ServiceCatalogRepository":
        """Create repository for catalog lookups."""
        from .service_catalog_repository import ServiceCatalogRepository

        return ServiceCatalogRepository(db)

    @staticmethod
    def create_duty_repository(db: Session) -> "DutyRepository":
        """Create repository for duty postings and assignments."""
        from .duty_repository import DutyRepository

        return DutyRepository(db)

    @staticmethod
    def create_application_repository(db: Session) -> "ApplicationRepository":
        """Create repository for duty applications."""
        from .application_repository import ApplicationRepository

        return ApplicationRepository(db)

    @staticmethod
    def create_access_grant_repository(db: Session) -> "AccessGrantRepository":
        """Create repository for health data access grants."""
        from .access_grant_repository import AccessGrantRepository

        return AccessGrantRepository(db)

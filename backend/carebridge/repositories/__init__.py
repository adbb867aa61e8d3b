# backend/carebridge/repositories/__init__.py
"""
Repository layer for the CareBridge platform.

Repositories own all SQL. Services own transactions.
"""

from .access_grant_repository import AccessGrantRepository
from .application_repository import ApplicationRepository
from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .duty_repository import DutyRepository
from .factory import RepositoryFactory
from .service_catalog_repository import ServiceCatalogRepository
from .user_repository import UserRepository

__all__ = [
    "AccessGrantRepository",
    "ApplicationRepository",
    "BaseRepository",
    "BookingRepository",
    "DutyRepository",
    "IRepository",
    "RepositoryFactory",
    "ServiceCatalogRepository",
    "UserRepository",
]

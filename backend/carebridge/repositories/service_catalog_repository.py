# backend/carebridge/repositories/service_catalog_repository.py
"""
Service Catalog Repository for the CareBridge Platform
"""

from typing import Optional, cast

from sqlalchemy.orm import Session

from ..models.service_catalog import ServiceCatalog
from .base_repository import BaseRepository


class ServiceCatalogRepository(BaseRepository[ServiceCatalog]):
    def __init__(self, db: Session):
        super().__init__(db, ServiceCatalog)

    def get_active_by_name(self, name: str) -> Optional[ServiceCatalog]:
        query = self._build_query().filter(
            ServiceCatalog.name == name, ServiceCatalog.is_active.is_(True)
        )
        return cast(Optional[ServiceCatalog], query.first())

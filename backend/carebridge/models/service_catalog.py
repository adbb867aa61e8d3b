# backend/carebridge/models/service_catalog.py
"""
Home-care service catalog.

Each entry carries the list price used to snapshot booking pricing, an
optional package price, and an optional surge window during which the base
price is multiplied.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class ServiceCatalog(Base):
    __tablename__ = "service_catalog"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    base_price = Column(Numeric(10, 2), nullable=False)
    package_price = Column(Numeric(10, 2), nullable=True)

    # Surge window in local hours, [start, end)
    surge_start_hour = Column(Integer, nullable=True)
    surge_end_hour = Column(Integer, nullable=True)
    surge_multiplier = Column(Numeric(4, 2), nullable=True)

    prescription_required = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="check_catalog_base_price_non_negative"),
        CheckConstraint(
            "surge_start_hour IS NULL OR (surge_start_hour >= 0 AND surge_start_hour <= 23)",
            name="check_catalog_surge_start_hour",
        ),
        CheckConstraint(
            "surge_end_hour IS NULL OR (surge_end_hour >= 0 AND surge_end_hour <= 23)",
            name="check_catalog_surge_end_hour",
        ),
    )

    @property
    def has_surge_window(self) -> bool:
        return (
            self.surge_start_hour is not None
            and self.surge_end_hour is not None
            and self.surge_multiplier is not None
        )

    def __repr__(self) -> str:
        return f"<ServiceCatalog {self.name} {self.base_price}>"

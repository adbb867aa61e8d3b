# backend/carebridge/services/pricing_service.py
"""
Pricing snapshot computed once when a booking is created.

platform_fee = fee_rate * base
tax          = tax_rate * (base + platform_fee)
total        = base + platform_fee + tax
payable      = total - discount
"""

from dataclasses import dataclass
from datetime import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..models.service_catalog import ServiceCatalog

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Major to minor units, e.g. rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return quantize_money(Decimal(amount) / 100)


@dataclass(frozen=True)
class PricingSnapshot:
    base_price: Decimal
    platform_fee: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal
    payable_amount: Decimal

    def as_booking_fields(self) -> dict:
        return {
            "base_price": self.base_price,
            "platform_fee": self.platform_fee,
            "tax": self.tax,
            "discount": self.discount,
            "total_amount": self.total_amount,
            "payable_amount": self.payable_amount,
        }


class PricingService:
    def __init__(
        self,
        platform_fee_rate: Optional[Decimal] = None,
        tax_rate: Optional[Decimal] = None,
    ):
        self.platform_fee_rate = (
            settings.platform_fee_rate if platform_fee_rate is None else platform_fee_rate
        )
        self.tax_rate = settings.tax_rate if tax_rate is None else tax_rate

    @staticmethod
    def is_surge_hour(service: ServiceCatalog, scheduled_time: time) -> bool:
        if not service.has_surge_window:
            return False
        return service.surge_start_hour <= scheduled_time.hour < service.surge_end_hour

    def base_price_for(
        self, service: ServiceCatalog, scheduled_time: time, is_package: bool = False
    ) -> Decimal:
        if is_package and service.package_price is not None:
            base = Decimal(service.package_price)
        else:
            base = Decimal(service.base_price)
        if self.is_surge_hour(service, scheduled_time):
            base = base * Decimal(service.surge_multiplier)
        return quantize_money(base)

    def compute(self, base_price: Decimal, discount: Decimal = Decimal("0")) -> PricingSnapshot:
        base = quantize_money(Decimal(base_price))
        discount = quantize_money(Decimal(discount))
        if base < 0:
            raise ValidationException("Base price cannot be negative")

        platform_fee = quantize_money(base * self.platform_fee_rate)
        tax = quantize_money((base + platform_fee) * self.tax_rate)
        total = base + platform_fee + tax
        if discount < 0 or discount > total:
            raise ValidationException(
                "Discount must be between zero and the total amount",
                code="INVALID_DISCOUNT",
            )
        return PricingSnapshot(
            base_price=base,
            platform_fee=platform_fee,
            tax=tax,
            discount=discount,
            total_amount=total,
            payable_amount=total - discount,
        )

    def snapshot_for(
        self,
        service: ServiceCatalog,
        scheduled_time: time,
        is_package: bool = False,
        discount: Decimal = Decimal("0"),
    ) -> PricingSnapshot:
        return self.compute(self.base_price_for(service, scheduled_time, is_package), discount)

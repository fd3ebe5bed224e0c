# backend/servicebook/services/pricing.py
"""
Booking price resolution.

All amounts are integers in minor units (pence).

    addons_total       = Σ add_on.price × quantity   (quantity <= max_quantity)
    location_surcharge = location.additional_charge  (may be negative)
    subtotal           = base_price + addons_total + location_surcharge
    window_modifier    = fixed: modifier | percentage: subtotal × modifier / 100
    total_amount       = subtotal + window_modifier

Deposit (service or package policy):
    percentage → round(total × pct / 100), fixed → amount (capped at total)
    remaining_amount = total_amount − deposit_amount

Package bookings use package.total_price as base_price.
Rounding is half-up to the nearest minor unit everywhere.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from ..constants import ModifierType
from ..errors import PricingError, ValidationError


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: int, percent) -> int:
    return round_half_up(Decimal(amount) * Decimal(str(percent)) / Decimal(100))


# ── Value types ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AddOnSelection:
    add_on_id: int
    quantity: int = 1


@dataclass(frozen=True)
class AddOnLine:
    """Priced add-on; becomes the BookingAddOn snapshot."""
    add_on_id: int
    name: str
    quantity: int
    unit_price: int
    duration_minutes: int = 0

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity

    @property
    def total_duration(self) -> int:
        return self.duration_minutes * self.quantity


@dataclass(frozen=True)
class DepositPolicy:
    """Percentage(pct) | Fixed(amount) | None."""
    kind: str = "none"
    value: Optional[float] = None

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    NONE = "none"

    @classmethod
    def percentage(cls, pct: float) -> "DepositPolicy":
        if not 0 < pct <= 100:
            raise PricingError(f"Deposit percentage must be in (0, 100], got {pct}", "deposit_percentage")
        return cls(cls.PERCENTAGE, pct)

    @classmethod
    def fixed(cls, amount: int) -> "DepositPolicy":
        if amount < 0:
            raise PricingError(f"Deposit amount cannot be negative, got {amount}", "deposit_amount")
        return cls(cls.FIXED, amount)

    @classmethod
    def none(cls) -> "DepositPolicy":
        return cls(cls.NONE, None)

    @classmethod
    def from_entity(cls, entity) -> "DepositPolicy":
        """Build from a Service/ServicePackage row (requires_deposit + one of two columns)."""
        if not getattr(entity, "requires_deposit", False):
            return cls.none()

        pct = entity.deposit_percentage
        amount = entity.deposit_amount
        if (pct is None) == (amount is None):
            raise PricingError(
                "Exactly one of deposit_percentage / deposit_amount must be set when a deposit is required",
                "deposit_percentage",
            )
        if pct is not None:
            return cls.percentage(pct)
        return cls.fixed(amount)

    @property
    def applies(self) -> bool:
        return self.kind != self.NONE

    def deposit_for(self, total_amount: int) -> Optional[int]:
        if self.kind == self.PERCENTAGE:
            return percent_of(total_amount, self.value)
        if self.kind == self.FIXED:
            return min(int(self.value), total_amount)
        return None


@dataclass(frozen=True)
class PriceModifier:
    amount: int = 0
    type: str = ModifierType.FIXED

    @classmethod
    def from_slot(cls, slot) -> "PriceModifier":
        if slot is None:
            return cls()
        return cls(slot.price_modifier or 0, slot.price_modifier_type or ModifierType.FIXED)

    def apply(self, subtotal: int) -> int:
        if not self.amount:
            return 0
        if self.type == ModifierType.PERCENTAGE:
            return percent_of(subtotal, self.amount)
        return int(self.amount)


@dataclass(frozen=True)
class PriceBreakdown:
    base_price: int
    addons_total: int
    location_surcharge: int
    window_modifier: int
    total_amount: int
    deposit_amount: Optional[int] = None
    remaining_amount: Optional[int] = None
    add_ons: tuple[AddOnLine, ...] = field(default_factory=tuple)

    @property
    def addons_duration(self) -> int:
        return sum(line.total_duration for line in self.add_ons)

    def verify(self) -> None:
        """Raise PricingError if any stored component disagrees with the total."""
        expected = self.base_price + self.addons_total + self.location_surcharge + self.window_modifier
        if expected != self.total_amount:
            raise PricingError(f"total_amount {self.total_amount} != components {expected}", "total_amount")
        if self.total_amount < 0:
            raise PricingError(f"Computed total is negative: {self.total_amount}", "total_amount")
        if self.deposit_amount is not None:
            if self.remaining_amount is None or self.deposit_amount + self.remaining_amount != self.total_amount:
                raise PricingError("deposit_amount + remaining_amount != total_amount", "deposit_amount")
            if self.deposit_amount < 0 or self.remaining_amount < 0:
                raise PricingError("Deposit split is negative", "deposit_amount")


# ── Add-ons ──────────────────────────────────────────────────────────────


def resolve_add_ons(
    available: Iterable,
    selections: Sequence[AddOnSelection],
) -> list[AddOnLine]:
    """
    Validate selections against the service's add-ons and price them.

    - unknown / inactive add-on          → ValidationError
    - duplicate add-on in selections     → ValidationError
    - quantity < 1 or > max_quantity     → ValidationError (never clamped)
    - required add-on not selected       → added with quantity 1
    """
    by_id = {a.id: a for a in available if a.is_active}
    lines: list[AddOnLine] = []
    seen: set[int] = set()

    for sel in selections:
        add_on = by_id.get(sel.add_on_id)
        if add_on is None:
            raise ValidationError(f"Add-on {sel.add_on_id} is not available for this service", "add_ons")
        if sel.add_on_id in seen:
            raise ValidationError(f"Add-on {sel.add_on_id} selected more than once", "add_ons")
        seen.add(sel.add_on_id)

        if sel.quantity < 1:
            raise ValidationError(f"Quantity for add-on {add_on.id} must be at least 1", "add_ons.quantity")
        if sel.quantity > add_on.max_quantity:
            raise ValidationError(
                f"Quantity {sel.quantity} for add-on '{add_on.name}' exceeds maximum of {add_on.max_quantity}",
                "add_ons.quantity",
            )
        lines.append(_line(add_on, sel.quantity))

    for add_on in by_id.values():
        if add_on.is_required and add_on.id not in seen:
            lines.append(_line(add_on, 1))

    return lines


def _line(add_on, quantity: int) -> AddOnLine:
    return AddOnLine(
        add_on_id=add_on.id,
        name=add_on.name,
        quantity=quantity,
        unit_price=add_on.price,
        duration_minutes=add_on.duration_minutes or 0,
    )


# ── Price ────────────────────────────────────────────────────────────────


def resolve_price(
    base_price: int,
    add_ons: Sequence[AddOnLine] = (),
    location_surcharge: int = 0,
    modifier: Optional[PriceModifier] = None,
    deposit_policy: Optional[DepositPolicy] = None,
) -> PriceBreakdown:
    """
    Compute the price breakdown of a candidate booking.

    Raises:
        PricingError: negative total (inputs failed validation upstream)
    """
    modifier = modifier or PriceModifier()
    deposit_policy = deposit_policy or DepositPolicy.none()

    addons_total = sum(line.total_price for line in add_ons)
    subtotal = base_price + addons_total + location_surcharge
    window_modifier = modifier.apply(subtotal)
    total_amount = subtotal + window_modifier

    if total_amount < 0:
        raise PricingError(f"Computed total is negative: {total_amount}", "total_amount")

    deposit_amount = deposit_policy.deposit_for(total_amount)
    remaining_amount = total_amount - deposit_amount if deposit_amount is not None else None

    breakdown = PriceBreakdown(
        base_price=base_price,
        addons_total=addons_total,
        location_surcharge=location_surcharge,
        window_modifier=window_modifier,
        total_amount=total_amount,
        deposit_amount=deposit_amount,
        remaining_amount=remaining_amount,
        add_ons=tuple(add_ons),
    )
    breakdown.verify()
    return breakdown


def quote_booking(
    service,
    location=None,
    selections: Sequence[AddOnSelection] = (),
    slot=None,
    package=None,
) -> PriceBreakdown:
    """Price a booking from ORM rows (service, optional location/slot/package)."""
    lines = resolve_add_ons(service.add_ons, selections)

    if package is not None:
        if not any(item.service_id == service.id for item in package.items):
            raise ValidationError(
                f"Package {package.id} does not include service {service.id}",
                "service_package_id",
            )
        validate_package(package)
        base_price = package.total_price
        policy = DepositPolicy.from_entity(package)
        if not policy.applies:
            policy = DepositPolicy.from_entity(service)
    else:
        base_price = service.base_price
        policy = DepositPolicy.from_entity(service)

    return resolve_price(
        base_price=base_price,
        add_ons=lines,
        location_surcharge=location.additional_charge if location is not None else 0,
        modifier=PriceModifier.from_slot(slot),
        deposit_policy=policy,
    )


def recompute_booking_total(booking) -> int:
    """Total from a booking's stored snapshots; must equal booking.total_amount."""
    addons_total = sum(a.total_price for a in booking.add_ons)
    if addons_total != booking.addons_total:
        raise PricingError(
            f"Booking {booking.id}: add-on snapshots sum to {addons_total}, stored {booking.addons_total}",
            "addons_total",
        )
    return booking.base_price + addons_total + booking.location_surcharge + (booking.window_modifier or 0)


# ── Packages ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PackageTotals:
    individual_price_total: int
    discount_amount: int
    total_price: int
    total_duration_minutes: int


def compute_package_totals(
    items: Iterable[tuple],
    discount_percentage: Optional[float] = None,
    discount_amount: Optional[int] = None,
) -> PackageTotals:
    """
    Args:
        items: (service, quantity, is_optional) triples; optional items
               are excluded from the price and duration sums
        discount_percentage: wins over discount_amount when both are given
    """
    individual = 0
    duration = 0
    for service, quantity, is_optional in items:
        if quantity < 1:
            raise ValidationError(f"Package quantity for service {service.id} must be at least 1", "items.quantity")
        if is_optional:
            continue
        individual += service.base_price * quantity
        duration += service.duration_minutes * quantity

    if discount_percentage is not None:
        if not 0 <= discount_percentage <= 100:
            raise ValidationError("discount_percentage must be between 0 and 100", "discount_percentage")
        discount = percent_of(individual, discount_percentage)
        if discount_amount is not None and discount_amount != discount:
            raise ValidationError(
                f"discount_amount {discount_amount} is inconsistent with {discount_percentage}% of {individual}",
                "discount_amount",
            )
    else:
        discount = discount_amount or 0

    if discount < 0 or discount > individual:
        raise ValidationError("Discount must be between 0 and the individual price total", "discount_amount")

    return PackageTotals(
        individual_price_total=individual,
        discount_amount=discount,
        total_price=individual - discount,
        total_duration_minutes=duration,
    )


def validate_package(package) -> None:
    """Raise PricingError when stored package totals violate their invariants."""
    if package.total_price != package.individual_price_total - package.discount_amount:
        raise PricingError(
            f"Package {package.id}: total_price {package.total_price} != "
            f"{package.individual_price_total} - {package.discount_amount}",
            "total_price",
        )
    if package.discount_percentage is not None:
        expected = percent_of(package.individual_price_total, package.discount_percentage)
        if expected != package.discount_amount:
            raise PricingError(
                f"Package {package.id}: discount_amount {package.discount_amount} != "
                f"{package.discount_percentage}% of {package.individual_price_total}",
                "discount_amount",
            )

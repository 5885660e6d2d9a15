from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

SERVICE_FEE_RATE = Decimal("0.05")
TAX_RATE = Decimal("0.08")
_CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceQuote:
    price_per_guest: Decimal
    guest_count: int
    base_total: Decimal
    service_fee: Decimal
    taxes: Decimal
    total_price: Decimal


def round2(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def price_per_guest(*, price_override: Decimal | None, base_price: Decimal) -> Decimal:
    """Slot override when set (zero included), otherwise the experience base price."""
    if price_override is not None:
        return Decimal(price_override)
    return Decimal(base_price)


def quote_price(unit_price: Decimal, guest_count: int) -> PriceQuote:
    """
    Pure price derivation for a booking. Fee and tax are rounded to cents
    before they are added, and the total is rounded again.
    """
    base_total = Decimal(unit_price) * guest_count
    service_fee = round2(base_total * SERVICE_FEE_RATE)
    taxes = round2(base_total * TAX_RATE)
    total_price = round2(base_total + service_fee + taxes)
    return PriceQuote(
        price_per_guest=Decimal(unit_price),
        guest_count=guest_count,
        base_total=base_total,
        service_fee=service_fee,
        taxes=taxes,
        total_price=total_price,
    )

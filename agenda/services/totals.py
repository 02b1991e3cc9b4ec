from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple, Optional


# folga de 1 centavo nas comparações de "está quitado"
PAID_EPSILON = 0.009


class CheckoutTotals(NamedTuple):
    subtotal: float
    total: float


def round_currency(value) -> float:
    """Arredonda para centavos, metade para cima."""
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _line_total(item) -> float:
    if isinstance(item, Mapping):
        amount, qty = item.get("amount"), item.get("qty")
    else:
        amount, qty = item.amount, getattr(item, "qty", None)
    return float(amount or 0) * (qty if qty is not None else 1)


def compute_totals(
    items: Iterable,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
) -> CheckoutTotals:
    subtotal = float(sum(_line_total(item) for item in items))
    value = max(0.0, float(discount_value or 0))

    if discount_type == "pct":
        discount = min(subtotal, subtotal * (value / 100))
    elif discount_type == "value":
        discount = min(subtotal, value)
    else:
        discount = 0.0

    return CheckoutTotals(subtotal=subtotal, total=max(0.0, subtotal - discount))

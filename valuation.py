from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence

from errors import ValidationError
from models import Addon, OrderItem, Variation, build
from money import ZERO, as_decimal, require_non_negative, round_money


def _as_variation(value: Any) -> Variation:
    if isinstance(value, Variation):
        return value
    return build(Variation, **dict(value))


def _as_addon(value: Any) -> Addon:
    if isinstance(value, Addon):
        return value
    return build(Addon, **dict(value))


def _require_quantity(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a whole number, got {value!r}")
    if value < 1:
        raise ValidationError(f"{field} must be >= 1, got {value}")
    return value


def compute_subtotal(
    base_price: Any,
    quantity: int,
    variations: Sequence[Any] = (),
    addons: Sequence[Any] = (),
) -> Decimal:
    """(base + Σ variation prices + Σ addon price × addon qty) × quantity, to 2 dp.

    Variations and addons may be models or plain mappings with `price`
    (and `quantity` for addons).
    """
    base = require_non_negative(as_decimal(base_price, "price"), "price")
    qty = _require_quantity(quantity, "quantity")

    unit = base
    for v in variations:
        v = _as_variation(v)
        unit += require_non_negative(v.price, "variation price")
    for a in addons:
        a = _as_addon(a)
        _require_quantity(a.quantity, "addon quantity")
        unit += require_non_negative(a.price, "addon price") * a.quantity

    return round_money(unit * qty)


def build_order_item(
    menu_item_id: str,
    name: str,
    price: Any,
    quantity: int,
    variations: Sequence[Any] = (),
    addons: Sequence[Any] = (),
    special_instructions: Optional[str] = None,
) -> OrderItem:
    """Snapshot a menu selection into an immutable order line.

    Prices are copied at this point; later menu changes never reach the item.
    """
    variation_models: List[Variation] = [_as_variation(v) for v in variations]
    addon_models: List[Addon] = [_as_addon(a) for a in addons]
    subtotal = compute_subtotal(price, quantity, variation_models, addon_models)
    return build(
        OrderItem,
        menu_item_id=menu_item_id,
        name=name,
        price=as_decimal(price, "price"),
        quantity=quantity,
        variations=variation_models,
        addons=addon_models,
        special_instructions=special_instructions,
        subtotal=subtotal,
    )


def order_total(items: Iterable[OrderItem]) -> Decimal:
    total = ZERO
    for item in items:
        total += item.subtotal
    return round_money(total)

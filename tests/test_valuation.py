from decimal import Decimal

import pytest

from errors import ValidationError
from models import Addon, Variation
from valuation import build_order_item, compute_subtotal, order_total


def test_subtotal_with_variation_and_addon():
    subtotal = compute_subtotal(
        "10.00",
        2,
        [{"name": "Large", "price": "2.00"}],
        [{"name": "Cheese", "price": "1.50", "quantity": 2}],
    )
    assert subtotal == Decimal("30.00")


def test_subtotal_accepts_models():
    subtotal = compute_subtotal(
        Decimal("4.25"),
        3,
        [Variation(name="Spicy", price=Decimal("0.50"))],
        [Addon(name="Dip", price=Decimal("0.75"))],
    )
    assert subtotal == Decimal("16.50")


def test_subtotal_rounds_half_up_to_cents():
    assert compute_subtotal("0.125", 1) == Decimal("0.13")
    assert compute_subtotal("1.005", 1) == Decimal("1.01")


def test_subtotal_is_deterministic():
    args = ("7.99", 3, [{"price": "1.10"}], [{"price": "0.40", "quantity": 3}])
    assert compute_subtotal(*args) == compute_subtotal(*args)


def test_subtotal_divides_back_to_unit_price():
    base, qty = Decimal("7.99"), 3
    variations = [{"price": "1.10"}]
    addons = [{"price": "0.40", "quantity": 3}]
    subtotal = compute_subtotal(base, qty, variations, addons)
    remainder = subtotal / qty - base - Decimal("1.10") - Decimal("0.40") * 3
    assert remainder.quantize(Decimal("0.01")) == 0


@pytest.mark.parametrize(
    "price, quantity, variations, addons",
    [
        ("-1", 1, [], []),
        ("5", 0, [], []),
        ("5", -2, [], []),
        ("5", 1, [{"price": "-0.5"}], []),
        ("5", 1, [], [{"price": "-1", "quantity": 1}]),
        ("5", 1, [], [{"price": "1", "quantity": 0}]),
        ("abc", 1, [], []),
        ("5", 1.5, [], []),
    ],
)
def test_invalid_inputs_are_rejected(price, quantity, variations, addons):
    with pytest.raises(ValidationError):
        compute_subtotal(price, quantity, variations, addons)


def test_order_item_snapshot_is_immutable():
    item = build_order_item("menu-1", "Burger", "8.00", 2, addons=[{"name": "Bacon", "price": "1.00"}])
    assert item.subtotal == Decimal("18.00")
    with pytest.raises(Exception):
        item.price = Decimal("1")


def test_order_item_snapshot_keeps_prices_when_source_changes():
    source = {"name": "Large", "price": "2.00"}
    item = build_order_item("menu-1", "Pizza", "10.00", 1, variations=[source])
    source["price"] = "5.00"
    assert item.variations[0].price == Decimal("2.00")
    assert item.subtotal == Decimal("12.00")


def test_special_instructions_limit():
    with pytest.raises(ValidationError):
        build_order_item("menu-1", "Soup", "3.00", 1, special_instructions="x" * 501)


def test_order_total():
    items = [
        build_order_item("m1", "A", "2.50", 2),
        build_order_item("m2", "B", "1.25", 1),
    ]
    assert order_total(items) == Decimal("6.25")

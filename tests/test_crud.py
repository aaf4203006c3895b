from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from restaurant_pos import crud, orders
from restaurant_pos.models import OrderStatus, Product


def test_categories_are_listed_by_name(seeded_db) -> None:
    names = [category.name for category in crud.list_categories(seeded_db)]
    assert names == sorted(names)


def test_duplicate_category_name_is_rejected(seeded_db) -> None:
    with pytest.raises(IntegrityError):
        crud.create_category(seeded_db, "Drinks", "#000000")
    seeded_db.rollback()


def test_deleting_category_orphans_its_products(seeded_db, burger) -> None:
    category_id = burger.category_id
    assert crud.delete_category(seeded_db, category_id) is True
    seeded_db.commit()

    product = seeded_db.get(Product, burger.id)
    assert product is not None
    assert product.category_id is None
    assert crud.get_category(seeded_db, category_id) is None


def test_partial_update_only_touches_supplied_fields(seeded_db, burger) -> None:
    updated = crud.update_product(seeded_db, burger.id, {"price": Decimal("11.50")})
    seeded_db.commit()

    assert updated.price == Decimal("11.50")
    assert updated.name == "Classic Burger"
    assert updated.cost_price == Decimal("4.00")


def test_explicit_null_is_applied(seeded_db, burger) -> None:
    crud.update_product(seeded_db, burger.id, {"sku": None})
    seeded_db.commit()
    assert crud.get_product(seeded_db, burger.id).sku is None


def test_empty_update_is_a_noop(seeded_db, burger) -> None:
    assert crud.update_product(seeded_db, burger.id, {}) is None
    assert crud.update_category(seeded_db, burger.category_id, {"unknown": 1}) is None
    assert crud.get_product(seeded_db, burger.id).price == Decimal("10.00")


def test_update_missing_row_returns_none(seeded_db) -> None:
    assert crud.update_table(seeded_db, 999, {"capacity": 10}) is None


def test_soft_deleted_product_leaves_catalog_but_keeps_history(seeded_db, burger) -> None:
    order = orders.create_order(seeded_db, 1)
    orders.add_order_item(seeded_db, order.id, burger.id, 1)
    seeded_db.commit()

    assert crud.delete_product(seeded_db, burger.id) is True
    seeded_db.commit()

    assert burger.id not in [p.id for p in crud.list_products(seeded_db)]
    assert crud.get_product(seeded_db, burger.id).active is False
    detail = crud.get_order(seeded_db, order.id)
    assert detail.items[0].product.name == "Classic Burger"
    assert detail.items[0].price == Decimal("10.00")


def test_products_filter_by_category(seeded_db, burger) -> None:
    drinks = next(c for c in crud.list_categories(seeded_db) if c.name == "Drinks")
    crud.create_product(seeded_db, name="Lemonade", price=Decimal("2.50"), category_id=drinks.id)
    seeded_db.commit()

    assert [p.name for p in crud.list_products(seeded_db, drinks.id)] == ["Lemonade"]
    assert len(crud.list_products(seeded_db)) == 2


def test_active_orders_exclude_closed_and_are_newest_first(seeded_db) -> None:
    first = orders.create_order(seeded_db, 1)
    second = orders.create_order(seeded_db, 2)
    done = orders.create_order(seeded_db, 3)
    dropped = orders.create_order(seeded_db, 4)
    orders.update_order_status(seeded_db, done.id, OrderStatus.completed)
    orders.update_order_status(seeded_db, dropped.id, OrderStatus.cancelled)
    seeded_db.commit()

    assert [o.id for o in crud.list_active_orders(seeded_db)] == [second.id, first.id]
    assert len(crud.list_orders(seeded_db, limit=3)) == 3


def test_table_crud_and_status(seeded_db) -> None:
    table = crud.create_table(seeded_db, 13, capacity=8, section="Terrace")
    seeded_db.commit()
    assert table.name == "Table 13"

    crud.update_table_status(seeded_db, table.id, "reserved")
    seeded_db.commit()
    assert crud.get_table(seeded_db, table.id).status == "reserved"

    assert crud.delete_table(seeded_db, table.id) is True
    seeded_db.commit()
    assert crud.get_table_by_number(seeded_db, 13) is None
    assert crud.delete_table(seeded_db, table.id) is False


def test_customer_crud(seeded_db) -> None:
    customer = crud.create_customer(seeded_db, "Maya", phone="+15550111")
    seeded_db.commit()
    crud.update_customer(seeded_db, customer.id, {"email": "maya@example.com"})
    seeded_db.commit()

    stored = crud.get_customer(seeded_db, customer.id)
    assert stored.email == "maya@example.com"
    assert stored.loyalty_points == 0
    assert crud.delete_customer(seeded_db, customer.id) is True


def test_stats_are_recomputed_from_storage(seeded_db, burger) -> None:
    crud.create_customer(seeded_db, "Noor")
    paid = orders.checkout(seeded_db, 1, [orders.CartLine(burger.id, 2)])
    orders.checkout(seeded_db, 2, [orders.CartLine(burger.id, 1)])
    orders.update_order(seeded_db, paid.id, {"payment_status": "paid"})
    orders.update_order_status(seeded_db, paid.id, OrderStatus.completed)
    seeded_db.commit()

    stats = crud.get_stats(seeded_db)
    assert stats == {
        "active_orders": 1,
        "total_products": 1,
        "total_revenue": Decimal("22.00"),
        "total_customers": 1,
    }


def test_settings_fall_back_to_configured_defaults(seeded_db) -> None:
    current = crud.get_settings(seeded_db)
    assert current["restaurant_name"] == "Restaurant POS"
    assert current["currency"] == "USD"
    assert current["print_receipt"] is True
    assert "tax_rate" not in current


def test_settings_are_stored_and_reset(seeded_db) -> None:
    updated = crud.update_settings(seeded_db, {"restaurant_name": "Cedar Grill", "print_kitchen": False})
    seeded_db.commit()
    assert updated["restaurant_name"] == "Cedar Grill"
    assert updated["print_kitchen"] is False
    assert updated["currency"] == "USD"

    crud.update_settings(seeded_db, {"currency": "EUR"})
    seeded_db.commit()
    current = crud.get_settings(seeded_db)
    assert (current["restaurant_name"], current["currency"]) == ("Cedar Grill", "EUR")

    crud.update_settings(seeded_db, {"restaurant_name": None})
    seeded_db.commit()
    assert crud.get_settings(seeded_db)["restaurant_name"] == "Restaurant POS"


def test_settings_update_ignores_unknown_keys(seeded_db) -> None:
    assert crud.update_settings(seeded_db, {"tax_rate": 0.14}) is None
    assert crud.update_settings(seeded_db, {}) is None

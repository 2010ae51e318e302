from __future__ import annotations

from app.db.tables import ACTIVE_ORDER_INDEX, OrderRow


def test_orders_allow_one_active_order_per_buyer_and_course() -> None:
    [index] = [i for i in OrderRow.__table__.indexes if i.name == ACTIVE_ORDER_INDEX]
    assert index.unique
    assert [c.name for c in index.columns] == ["buyer_id", "course_id"]
    where = str(index.dialect_options["postgresql"]["where"])
    assert "'pending'" in where and "'paid'" in where
    assert "failed" not in where

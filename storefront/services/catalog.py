# storefront/services/catalog.py
"""Read-only view of the catalog used at checkout.

The catalog service owns products; checkout only needs a price snapshot
and the current stock for each requested line.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from ..extensions import db
from ..model import Product
from ..utils.money import D


@dataclass(frozen=True)
class CartLine:
    product_id: int
    unit_price: Decimal
    quantity: int
    name: str = ""
    sku: str | None = None
    weight_kg: Decimal | None = None


@dataclass
class CatalogSnapshot:
    lines: list = field(default_factory=list)
    problems: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.lines) and not self.problems


class Catalog(Protocol):
    def snapshot(self, items: list) -> CatalogSnapshot: ...


def _requested_lines(items):
    merged = {}
    for raw in items or []:
        try:
            pid = int(raw.get("product_id"))
            qty = int(raw.get("quantity", raw.get("qty", 0)))
        except (AttributeError, TypeError, ValueError):
            raise ValueError("each cart item needs an integer product_id and quantity")
        if qty < 1:
            raise ValueError(f"quantity for product {pid} must be >= 1")
        merged[pid] = merged.get(pid, 0) + qty
    return merged


class SqlCatalog:
    """Catalog backed by the shared ``products`` table."""

    def snapshot(self, items: list) -> CatalogSnapshot:
        wanted = _requested_lines(items)
        snap = CatalogSnapshot()
        if not wanted:
            snap.problems.append({"reason": "cart is empty"})
            return snap

        products = (
            db.session.query(Product)
            .filter(Product.id.in_(list(wanted)))
            .all()
        )
        pmap = {p.id: p for p in products}

        for pid, qty in wanted.items():
            p = pmap.get(pid)
            if not p or not p.is_active:
                snap.problems.append({"product_id": pid, "reason": "no longer available"})
                continue
            if int(p.stock or 0) < qty:
                snap.problems.append({
                    "product_id": pid,
                    "reason": f"not enough stock for '{p.name}', only {int(p.stock or 0)} available",
                })
                continue
            snap.lines.append(CartLine(
                product_id=p.id,
                unit_price=D(p.price),
                quantity=qty,
                name=p.name,
                sku=p.sku,
                weight_kg=D(p.weight_kg) if p.weight_kg is not None else None,
            ))
        return snap

"""Purchase bills: insert items, create missing products, credit stock."""
import logging
import random
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import select

from ..core.errors import InsufficientStockError, NotFoundError, ValidationError
from ..db import transaction
from ..models.product import Product, ProductBatch
from ..models.purchase import Purchase, PurchaseItem
from ..utils.money import ZERO, as_number, money, quantity, to_decimal
from . import audit, stock_ledger

logger = logging.getLogger(__name__)


def generate_bill_no() -> str:
    return f"BILL-{random.randint(100000, 999999)}"


def _boxes(qty, cov) -> Decimal:
    cov = to_decimal(cov) or to_decimal(1)
    return quantity(to_decimal(qty) / cov)


def _resolve_product(db, item: Dict) -> int:
    product_id = item.get("product_id")
    if product_id:
        if db.get(Product, product_id) is None:
            raise ValidationError(f"Unknown product {product_id}", product_id=product_id)
        return product_id
    name = (item.get("product_name") or "").strip()
    if not name:
        raise ValidationError("Item needs productId or productName", batch_no=item.get("batch_no"))
    product = Product(
        name=name,
        size=item.get("size") or "",
        quality=item.get("quality") or "",
        rate=money(item.get("rate")),
        status="active",
        avail_qty=ZERO,
    )
    db.add(product)
    db.flush()
    logger.info("Product %s (%s) created from purchase item", product.id, name)
    return product.id


def _apply_items(db, purchase: Purchase, items: List[Dict]) -> None:
    ref = ("purchase", purchase.id)
    for item in items:
        qty = quantity(item.get("qty"))
        batch_no = (item.get("batch_no") or "").strip()
        # lineas incompletas se ignoran
        if qty == 0 or not batch_no:
            continue
        if qty < 0:
            raise ValidationError("Purchase quantity must be positive", batch_no=batch_no)
        product_id = _resolve_product(db, item)
        cov = to_decimal(item.get("cov")) or to_decimal(1)
        db.add(
            PurchaseItem(
                purchase_id=purchase.id,
                product_id=product_id,
                batch_no=batch_no,
                qty=qty,
                rate=money(item.get("rate")),
                cov=cov,
                total=money(item.get("total")),
                godown=item.get("godown"),
            )
        )
        stock_ledger.credit_batch(
            db, product_id, batch_no, qty, location=item.get("godown"), reason="purchase", ref=ref
        )
        stock_ledger.adjust_product_avail_qty(db, product_id, _boxes(qty, cov))


def _reverse_items(db, purchase: Purchase) -> set:
    """Take every existing item back out of stock. Returns the touched batch ids."""
    ref = ("purchase", purchase.id)
    touched = set()
    for old in list(purchase.items):
        batch = stock_ledger.get_batch(db, old.product_id, old.batch_no, lock=True)
        if batch is not None:
            stock_ledger.apply_delta(db, batch, -quantity(old.qty), "purchase_reversal", ref)
            touched.add(batch.id)
        stock_ledger.adjust_product_avail_qty(db, old.product_id, -_boxes(old.qty, old.cov))
    purchase.items.clear()
    db.flush()
    return touched


def _check_non_negative(db, batch_ids) -> None:
    for batch_id in batch_ids:
        batch = db.get(ProductBatch, batch_id)
        if batch is not None and quantity(batch.qty) < 0:
            raise InsufficientStockError(batch.product_id, ZERO, -quantity(batch.qty))


def add_purchase(db, header: Dict, items: List[Dict]) -> Purchase:
    bill_no = (header.get("bill_no") or "").strip() or generate_bill_no()
    with transaction(db):
        dup = db.execute(select(Purchase.id).where(Purchase.bill_no == bill_no)).first()
        if dup:
            raise ValidationError(f"Bill {bill_no} already exists", bill_no=bill_no)
        purchase = Purchase(
            bill_no=bill_no,
            purchase_date=header.get("purchase_date"),
            client_name=header.get("client_name"),
            client_contact=header.get("client_contact"),
            subtotal=money(header.get("subtotal")),
        )
        db.add(purchase)
        db.flush()
        _apply_items(db, purchase, items)
        audit.record(db, "purchase", purchase.id, "create", {"bill_no": bill_no, "items": len(items)})
    logger.info("Purchase %s saved as bill %s", purchase.id, bill_no)
    return purchase


def update_purchase(db, purchase_id: int, header: Dict, items: List[Dict]) -> Purchase:
    with transaction(db):
        purchase = db.execute(
            select(Purchase).where(Purchase.id == purchase_id).with_for_update()
        ).scalars().first()
        if purchase is None:
            raise NotFoundError("Purchase not found", purchase_id=purchase_id)

        touched = _reverse_items(db, purchase)

        bill_no = (header.get("bill_no") or "").strip()
        if bill_no and bill_no != purchase.bill_no:
            dup = db.execute(select(Purchase.id).where(Purchase.bill_no == bill_no)).first()
            if dup:
                raise ValidationError(f"Bill {bill_no} already exists", bill_no=bill_no)
            purchase.bill_no = bill_no
        for field in ("purchase_date", "client_name", "client_contact"):
            if header.get(field) is not None:
                setattr(purchase, field, header[field])
        if header.get("subtotal") is not None:
            purchase.subtotal = money(header["subtotal"])

        _apply_items(db, purchase, items)
        db.flush()
        # consumed stock may leave a reversed batch below zero
        _check_non_negative(db, touched)
        audit.record(db, "purchase", purchase.id, "update", {"items": len(items)})
    db.refresh(purchase)
    logger.info("Purchase %s updated (%d items)", purchase.id, len(purchase.items))
    return purchase


def list_purchases(db) -> List[Dict]:
    rows = db.execute(select(Purchase).order_by(Purchase.id.desc())).scalars().all()
    return [serialize_purchase(p) for p in rows]


def get_purchase(db, purchase_id: int) -> Dict:
    purchase = db.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError("Purchase not found", purchase_id=purchase_id)
    return serialize_purchase(purchase)


def serialize_purchase(p: Purchase) -> Dict:
    return {
        "id": p.id,
        "bill_no": p.bill_no,
        "purchase_date": p.purchase_date.isoformat() if p.purchase_date else None,
        "client_name": p.client_name,
        "client_contact": p.client_contact,
        "subtotal": as_number(p.subtotal),
        "items": [
            {
                "id": it.id,
                "product_id": it.product_id,
                "batch_no": it.batch_no,
                "qty": as_number(it.qty),
                "rate": as_number(it.rate),
                "cov": as_number(it.cov),
                "total": as_number(it.total),
                "godown": it.godown,
            }
            for it in p.items
        ],
    }

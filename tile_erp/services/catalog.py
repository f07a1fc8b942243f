"""Product catalog. Batch quantities set here go through the ledger as adjustments."""
import logging
import math
from typing import Dict, List

from sqlalchemy import func, select

from ..core.errors import NotFoundError, ValidationError
from ..db import transaction
from ..models.delivery import DispatchDeduction
from ..models.product import Product, ProductBatch
from ..utils.money import ZERO, as_number, money, quantity
from . import audit, stock_ledger

logger = logging.getLogger(__name__)

_FIELDS = ("name", "size", "brand", "category", "quality", "status", "description", "image")


def _clean_batches(batches: List[Dict]) -> List[Dict]:
    seen = set()
    out = []
    for b in batches or []:
        batch_no = (b.get("batch_no") or "").strip()
        if not batch_no:
            raise ValidationError("batchNo is required for every batch")
        if batch_no in seen:
            raise ValidationError(f"Duplicate batch {batch_no}", batch_no=batch_no)
        qty = quantity(b.get("qty"))
        if qty < 0:
            raise ValidationError("Batch quantity must not be negative", batch_no=batch_no)
        seen.add(batch_no)
        out.append({"batch_no": batch_no, "qty": qty, "location": b.get("location")})
    return out


def add_product(db, data: Dict, batches: List[Dict]) -> Product:
    if not (data.get("name") or "").strip():
        raise ValidationError("Product name is required")
    batches = _clean_batches(batches)
    with transaction(db):
        product = Product(rate=money(data.get("rate")), avail_qty=quantity(data.get("avail_qty")))
        for field in _FIELDS:
            if data.get(field) is not None:
                setattr(product, field, data[field])
        db.add(product)
        db.flush()
        ref = ("product", product.id)
        for b in batches:
            stock_ledger.credit_batch(
                db, product.id, b["batch_no"], b["qty"], location=b["location"],
                reason="adjustment", ref=ref,
            )
        audit.record(db, "product", product.id, "create", {"batches": len(batches)})
    logger.info("Product %s (%s) added with %d batch(es)", product.id, product.name, len(batches))
    return product


def update_product(db, product_id: int, data: Dict, batches: List[Dict]) -> Product:
    """
    Catalog fields plus a full batch list: listed batches are created or set to
    the given qty (the difference is logged as an ``adjustment`` move), batches
    missing from the list are deleted. A batch that already fed a delivery
    challan cannot be deleted.
    """
    batches = _clean_batches(batches)
    with transaction(db):
        product = db.execute(
            select(Product).where(Product.id == product_id).with_for_update()
        ).scalars().first()
        if product is None:
            raise NotFoundError("Product not found", product_id=product_id)
        for field in _FIELDS:
            if data.get(field) is not None:
                setattr(product, field, data[field])
        if data.get("rate") is not None:
            product.rate = money(data["rate"])

        ref = ("product", product.id)
        incoming = {b["batch_no"] for b in batches}
        for batch in list(product.batches):
            if batch.batch_no in incoming:
                continue
            used = db.execute(
                select(func.count(DispatchDeduction.id)).where(DispatchDeduction.batch_id == batch.id)
            ).scalar()
            if used:
                raise ValidationError(
                    f"Batch {batch.batch_no} was dispatched and cannot be removed",
                    batch_no=batch.batch_no,
                )
            # sus movimientos se borran en cascada
            product.batches.remove(batch)
        db.flush()

        for b in batches:
            batch = stock_ledger.get_batch(db, product.id, b["batch_no"], lock=True)
            if batch is None:
                stock_ledger.credit_batch(
                    db, product.id, b["batch_no"], b["qty"], location=b["location"],
                    reason="adjustment", ref=ref,
                )
                continue
            stock_ledger.apply_delta(db, batch, b["qty"] - quantity(batch.qty), "adjustment", ref)
            if b["location"] is not None:
                batch.location = b["location"]
        audit.record(db, "product", product.id, "update", {"batches": len(batches)})
    db.refresh(product)
    logger.info("Product %s updated", product.id)
    return product


def list_products(db, page: int = 1, limit: int = 10) -> Dict:
    page = max(1, page)
    limit = max(1, min(100, limit))
    total_items = db.execute(select(func.count(Product.id))).scalar() or 0
    products = (
        db.execute(select(Product).order_by(Product.id.desc()).limit(limit).offset((page - 1) * limit))
        .scalars()
        .all()
    )
    return {
        "products": [serialize_product(p) for p in products],
        "pagination": {
            "total_items": total_items,
            "total_pages": math.ceil(total_items / limit),
            "current_page": page,
            "limit": limit,
        },
    }


def serialize_product(p: Product) -> Dict:
    return {
        "id": p.id,
        "name": p.name,
        "size": p.size,
        "brand": p.brand,
        "category": p.category,
        "quality": p.quality,
        "rate": as_number(p.rate),
        "status": p.status,
        "description": p.description,
        "image": p.image,
        "avail_qty": as_number(p.avail_qty),
        "batches": [stock_ledger.serialize_batch(b) for b in p.batches],
        "current_stock": as_number(sum((quantity(b.qty) for b in p.batches), ZERO)),
    }

"""Stock ledger primitives.

Batch quantities are only changed through this module. Every change to
``product_batch.qty`` is written as a compare-and-swap against the value read
in the same transaction and is mirrored by one signed ``stock_move`` row, so
the batch table is a materialized view of the move log (see ``reconcile``).

``product.avail_qty`` is a separate box-unit counter; it is adjusted with a
single clamped UPDATE and never goes below zero.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func, select, update

from ..core.config import settings
from ..core.errors import ConcurrencyConflictError, InsufficientStockError, ValidationError
from ..models.product import Product, ProductBatch
from ..models.stock import StockMove
from ..utils.money import ZERO, as_number, quantity

logger = logging.getLogger(__name__)

POLICY_ENFORCE = "enforce"
POLICY_WARN = "warn"

Ref = Tuple[Optional[str], Optional[object]]


def _write_qty(db, batch: ProductBatch, seen: Decimal, new_qty: Decimal) -> None:
    res = db.execute(
        update(ProductBatch)
        .where(ProductBatch.id == batch.id, ProductBatch.qty == seen)
        .values(qty=new_qty)
        .execution_options(synchronize_session="evaluate")
    )
    if res.rowcount != 1:
        raise ConcurrencyConflictError(
            f"Batch {batch.batch_no} of product {batch.product_id} changed concurrently",
            batch_id=batch.id,
        )


def _move(db, batch: ProductBatch, delta: Decimal, reason: str, ref: Ref) -> None:
    ref_type, ref_id = ref
    db.add(
        StockMove(
            product_id=batch.product_id,
            batch_id=batch.id,
            delta=delta,
            reason=reason,
            ref_type=ref_type,
            ref_id=None if ref_id is None else str(ref_id),
        )
    )


def apply_delta(db, batch: ProductBatch, delta, reason: str, ref: Ref = (None, None)) -> Decimal:
    """Signed change of one batch, logged. No sign check: callers validate."""
    delta = quantity(delta)
    if delta == 0:
        return quantity(batch.qty)
    seen = quantity(batch.qty)
    new_qty = seen + delta
    _write_qty(db, batch, seen, new_qty)
    _move(db, batch, delta, reason, ref)
    return new_qty


def get_batch(db, product_id: int, batch_no: str, lock: bool = False) -> Optional[ProductBatch]:
    stmt = select(ProductBatch).where(
        ProductBatch.product_id == product_id, ProductBatch.batch_no == batch_no
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def credit_batch(
    db,
    product_id: int,
    batch_no: str,
    qty,
    location: Optional[str] = None,
    reason: str = "purchase",
    ref: Ref = (None, None),
) -> ProductBatch:
    """Add qty to (product, batch_no); a new batch takes `location`, an existing one keeps its own."""
    qty = quantity(qty)
    batch = get_batch(db, product_id, batch_no, lock=True)
    if batch is None:
        batch = ProductBatch(product_id=product_id, batch_no=batch_no, qty=ZERO, location=location)
        db.add(batch)
        db.flush()
    apply_delta(db, batch, qty, reason, ref)
    return batch


def available_qty(db, product_id: int) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(ProductBatch.qty), 0)).where(
            ProductBatch.product_id == product_id, ProductBatch.qty > 0
        )
    ).scalar()
    return quantity(total)


def debit_batches_fifo(
    db, product_id: int, qty_needed, ref: Ref = (None, None)
) -> List[Tuple[ProductBatch, Decimal]]:
    """
    Deduct qty_needed from the product's batches, lowest batch_no first.

    Returns the (batch, qty) pairs actually deducted. With the default
    ``enforce`` policy a shortfall raises InsufficientStockError before any
    batch is touched; with ``warn`` the debit stops when batches run out.
    """
    remaining = quantity(qty_needed)
    if remaining < 0:
        raise ValidationError("Debit quantity must not be negative", product_id=product_id)
    if remaining == 0:
        return []

    batches = (
        db.execute(
            select(ProductBatch)
            .where(ProductBatch.product_id == product_id, ProductBatch.qty > 0)
            .order_by(ProductBatch.batch_no.asc(), ProductBatch.id.asc())
            .with_for_update()
        )
        .scalars()
        .all()
    )
    available = sum((quantity(b.qty) for b in batches), ZERO)
    if available < remaining:
        if settings.stock_policy != POLICY_WARN:
            raise InsufficientStockError(product_id, available, remaining)
        logger.warning(
            "FIFO under-shoot for product %s: need %s, have %s", product_id, remaining, available
        )

    deducted: List[Tuple[ProductBatch, Decimal]] = []
    for b in batches:
        if remaining <= 0:
            break
        take = min(quantity(b.qty), remaining)
        apply_delta(db, b, -take, "dispatch", ref)
        deducted.append((b, take))
        remaining -= take
    return deducted


def restore_deductions(db, deductions, ref: Ref = (None, None)) -> None:
    """Credit back recorded (batch_id, qty) pairs onto the exact batches, newest first."""
    for batch_id, qty in reversed(list(deductions)):
        batch = db.execute(
            select(ProductBatch).where(ProductBatch.id == batch_id).with_for_update()
        ).scalars().first()
        if batch is None:
            raise ValidationError(f"Batch {batch_id} no longer exists", batch_id=batch_id)
        apply_delta(db, batch, qty, "dispatch_reversal", ref)


def adjust_product_avail_qty(db, product_id: int, delta) -> bool:
    """avail_qty = max(avail_qty + delta, 0) in one statement. False if the product is missing."""
    delta = quantity(delta)
    new_value = Product.avail_qty + delta
    res = db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(avail_qty=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1


def batch_summary(db, product_id: int) -> Dict:
    batches = (
        db.execute(
            select(ProductBatch)
            .where(ProductBatch.product_id == product_id)
            .order_by(ProductBatch.batch_no.asc())
        )
        .scalars()
        .all()
    )
    return {
        "batches": [serialize_batch(b) for b in batches],
        "current_stock": as_number(sum((quantity(b.qty) for b in batches), ZERO)),
    }


def serialize_batch(b: ProductBatch) -> Dict:
    return {
        "id": b.id,
        "batch_no": b.batch_no,
        "qty": as_number(b.qty),
        "location": b.location,
    }


def ledger_balances(db, product_id: Optional[int] = None) -> Dict[int, Decimal]:
    stmt = select(StockMove.batch_id, func.coalesce(func.sum(StockMove.delta), 0)).group_by(
        StockMove.batch_id
    )
    if product_id is not None:
        stmt = stmt.where(StockMove.product_id == product_id)
    return {batch_id: quantity(total) for batch_id, total in db.execute(stmt).all()}


def reconcile(db, fix: bool = False) -> List[Dict]:
    """
    Compare every batch with the sum of its moves. With fix=True the batch qty
    is rewritten from the ledger (no move is logged, the ledger is the truth).
    """
    balances = ledger_balances(db)
    drift = []
    for b in db.execute(select(ProductBatch).order_by(ProductBatch.id)).scalars():
        ledger_qty = balances.get(b.id, ZERO)
        batch_qty = quantity(b.qty)
        if ledger_qty == batch_qty:
            continue
        drift.append(
            {
                "batch_id": b.id,
                "product_id": b.product_id,
                "batch_no": b.batch_no,
                "batch_qty": as_number(batch_qty),
                "ledger_qty": as_number(ledger_qty),
            }
        )
        if fix:
            _write_qty(db, b, batch_qty, ledger_qty)
    if drift:
        logger.warning("Stock ledger drift on %d batch(es), fix=%s", len(drift), fix)
    return drift


def list_moves(db, product_id: int, limit: int = 200) -> List[Dict]:
    rows = (
        db.execute(
            select(StockMove)
            .where(StockMove.product_id == product_id)
            .order_by(StockMove.id.desc())
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return [
        {
            "id": m.id,
            "batch_id": m.batch_id,
            "delta": as_number(m.delta),
            "reason": m.reason,
            "ref_type": m.ref_type,
            "ref_id": m.ref_id,
            "at": m.at.isoformat() if m.at else None,
        }
        for m in rows
    ]

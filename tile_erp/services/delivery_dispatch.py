"""
Delivery challans.

Generating a challan moves physical stock out of the product's batches in
FIFO order (lowest batch_no first), releases the boxes reserved by the
quotation and advances the quotation item's dispatched quantity (``weight``).
The per-batch breakdown of every debit is stored in ``dispatch_deduction`` so
deleting the challan puts the stock back on exactly the batches it came from.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update

from ..core.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from ..db import transaction
from ..models.delivery import DeliveryChallan, DeliveryChallanItem, DispatchDeduction
from ..models.product import Product
from ..models.quotation import Quotation, QuotationItem
from ..utils.money import ZERO, as_number, quantity, to_decimal
from . import audit, stock_ledger
from .quotation_engine import dispatched_totals, serialize_item, serialize_quotation

logger = logging.getLogger(__name__)


def _items_by_product(quotation: Quotation) -> Dict[int, List[QuotationItem]]:
    out: Dict[int, List[QuotationItem]] = {}
    for it in quotation.items:
        out.setdefault(it.product_id, []).append(it)
    return out


def _shift_weight(db, item: QuotationItem, delta) -> None:
    """weight += delta, compare-and-swap on the value held by the session; floors at 0."""
    seen = quantity(item.weight)
    new_weight = max(ZERO, seen + quantity(delta))
    res = db.execute(
        update(QuotationItem)
        .where(QuotationItem.id == item.id, QuotationItem.weight == seen)
        .values(weight=new_weight)
        .execution_options(synchronize_session="evaluate")
    )
    if res.rowcount != 1:
        raise ConcurrencyConflictError(
            f"Quotation item {item.id} was dispatched concurrently", item_id=item.id
        )


def generate_delivery_challan(
    db,
    quotation_id: int,
    client: Optional[str],
    contact: Optional[str],
    address: Optional[str],
    driver_details: Dict,
    items: List[Dict],
) -> DeliveryChallan:
    with transaction(db):
        quotation = db.get(Quotation, quotation_id)
        if quotation is None:
            raise NotFoundError("Quotation not found", quotation_id=quotation_id)
        if not items:
            raise ValidationError("A delivery challan needs at least one item")

        by_product = _items_by_product(quotation)
        totals = dispatched_totals(db, quotation.id)
        already = {pid: boxes for pid, (boxes, _) in totals.items()}

        challan = DeliveryChallan(
            quotation_id=quotation.id,
            client=client,
            contact=contact,
            address=address,
            delivery_boy=driver_details.get("delivery_boy"),
            driver_contact=driver_details.get("driver_contact"),
            tempo=driver_details.get("tempo"),
        )
        db.add(challan)
        db.flush()
        ref = ("delivery_challan", challan.id)

        for entry in items:
            pid = entry.get("product_id")
            boxes = int(entry.get("dispatch_boxes") or 0)
            q_items = by_product.get(pid)
            if not q_items:
                raise ValidationError(
                    f"Product {pid} is not on quotation {quotation.id}", product_id=pid
                )
            if boxes <= 0:
                raise ValidationError("dispatchBoxes must be greater than 0", product_id=pid)
            ordered = sum(it.box or 0 for it in q_items)
            left = ordered - already.get(pid, 0)
            if boxes > left:
                raise ValidationError(
                    f"Only {left} box(es) of product {pid} left to dispatch",
                    product_id=pid,
                    remaining_boxes=left,
                )
            already[pid] = already.get(pid, 0) + boxes

            target = q_items[0]
            cov = to_decimal(target.cov)
            dispatch_qty = quantity(cov * boxes)

            product_name = entry.get("product_name")
            if not product_name:
                product = db.get(Product, pid)
                product_name = product.name if product else None
            row = DeliveryChallanItem(
                challan_id=challan.id,
                product_id=pid,
                product_name=product_name,
                dispatch_boxes=boxes,
                dispatch_qty=dispatch_qty,
                remaining_stock=None
                if entry.get("remaining_stock") is None
                else quantity(entry["remaining_stock"]),
            )
            db.add(row)
            db.flush()

            for batch, take in stock_ledger.debit_batches_fifo(db, pid, dispatch_qty, ref):
                db.add(DispatchDeduction(challan_item_id=row.id, batch_id=batch.id, qty=take))
            stock_ledger.adjust_product_avail_qty(db, pid, -boxes)
            _shift_weight(db, target, dispatch_qty)

        audit.record(
            db, "delivery_challan", challan.id, "create",
            {"quotation_id": quotation.id, "items": len(items)},
        )
    logger.info("Challan %s generated for quotation %s", challan.id, quotation_id)
    return challan


def delete_delivery_challan(db, challan_id: int) -> None:
    if not challan_id:
        raise ValidationError("challanId is required")
    with transaction(db):
        challan = db.execute(
            select(DeliveryChallan).where(DeliveryChallan.id == challan_id).with_for_update()
        ).scalars().first()
        if challan is None:
            raise NotFoundError("Delivery challan not found", challan_id=challan_id)
        ref = ("delivery_challan", challan.id)
        quotation = db.get(Quotation, challan.quotation_id)
        by_product = _items_by_product(quotation) if quotation is not None else {}

        for row in challan.items:
            stock_ledger.adjust_product_avail_qty(db, row.product_id, row.dispatch_boxes or 0)
            stock_ledger.restore_deductions(
                db, [(d.batch_id, quantity(d.qty)) for d in row.deductions], ref
            )
            q_items = by_product.get(row.product_id)
            if q_items:
                _shift_weight(db, q_items[0], -quantity(row.dispatch_qty))

        audit.record(
            db, "delivery_challan", challan.id, "delete",
            {"quotation_id": challan.quotation_id, "items": len(challan.items)},
        )
        db.delete(challan)
    logger.info("Challan %s deleted, stock restored", challan_id)


def serialize_challan(ch: DeliveryChallan) -> Dict:
    return {
        "id": ch.id,
        "quotation_id": ch.quotation_id,
        "client": ch.client,
        "contact": ch.contact,
        "address": ch.address,
        "delivery_boy": ch.delivery_boy,
        "driver_contact": ch.driver_contact,
        "tempo": ch.tempo,
        "created_at": ch.created_at.isoformat() if ch.created_at else None,
        "items": [
            {
                "id": it.id,
                "product_id": it.product_id,
                "product_name": it.product_name,
                "dispatch_boxes": it.dispatch_boxes,
                "dispatch_qty": as_number(it.dispatch_qty),
                "remaining_stock": None
                if it.remaining_stock is None
                else as_number(it.remaining_stock),
                "batches": [
                    {"batch_id": d.batch_id, "qty": as_number(d.qty)} for d in it.deductions
                ],
            }
            for it in ch.items
        ],
    }


def list_delivery_challans(db) -> List[Dict]:
    rows = db.execute(select(DeliveryChallan).order_by(DeliveryChallan.id.desc())).scalars().all()
    return [serialize_challan(ch) for ch in rows]


def get_delivery_challan(db, challan_id: int) -> Dict:
    challan = db.get(DeliveryChallan, challan_id)
    if challan is None:
        raise NotFoundError("Delivery challan not found", challan_id=challan_id)
    data = serialize_challan(challan)
    quotation = db.get(Quotation, challan.quotation_id)
    if quotation is not None:
        data["quotation"] = serialize_quotation(quotation)
        data["quotation_items"] = [serialize_item(it) for it in quotation.items]
    return data

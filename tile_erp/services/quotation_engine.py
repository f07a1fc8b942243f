"""Quotations: stock reservation on save, balances, architect commission."""
import logging
import math
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..db import transaction
from ..models.delivery import DeliveryChallan, DeliveryChallanItem
from ..models.product import Product
from ..models.quotation import ArchitectLedger, ArchitectSettlement, Quotation, QuotationItem
from ..utils.money import ZERO, as_number, money, quantity, to_decimal
from . import audit, stock_ledger

logger = logging.getLogger(__name__)

_CLIENT_FIELDS = {
    "client_name": "name",
    "contact_no": "contact_no",
    "alt_contact_no": "alt_contact_no",
    "email": "email",
    "address": "address",
    "attended_by": "attended_by",
    "architect": "architect",
    "gst_no": "gst_no",
}


def _check_rows(db, rows: List[Dict]) -> None:
    for r in rows:
        pid = r.get("product_id")
        if not pid:
            raise ValidationError("Every quotation row needs a productId")
        if int(r.get("box") or 0) < 0:
            raise ValidationError("Box count must not be negative", product_id=pid)
        if db.get(Product, pid) is None:
            raise ValidationError(f"Unknown product {pid}", product_id=pid)


def _insert_rows(db, quotation: Quotation, rows: List[Dict], carried: Dict[int, object] = None):
    """Insert items and reserve their boxes against avail_qty."""
    carried = dict(carried or {})
    for r in rows:
        pid = r["product_id"]
        box = int(r.get("box") or 0)
        db.add(
            QuotationItem(
                quotation_id=quotation.id,
                product_id=pid,
                size=r.get("size") or "",
                quality=r.get("quality") or "",
                rate=money(r.get("rate")),
                cov=None if r.get("cov") is None else quantity(r["cov"]),
                box=box,
                # dispatch progress belongs to the first row of a product
                weight=carried.pop(pid, ZERO),
                discount=money(r.get("discount")),
                total=money(r.get("total")),
                area=quantity(r.get("area")),
            )
        )
        stock_ledger.adjust_product_avail_qty(db, pid, -box)


def save_quotation(
    db,
    client_details: Dict,
    rows: List[Dict],
    grand_total,
    additional_discount: Optional[str] = None,
    header_section: Optional[str] = None,
    bottom_section: Optional[str] = None,
) -> Quotation:
    grand_total = money(grand_total)
    with transaction(db):
        _check_rows(db, rows)
        quotation = Quotation(
            header_section=header_section,
            bottom_section=bottom_section,
            additional_discount=additional_discount,
            grand_total=grand_total,
            paid_amount=ZERO,
            due_amount=grand_total,
            is_settled=False,
            commission_amount=ZERO,
        )
        for column, key in _CLIENT_FIELDS.items():
            setattr(quotation, column, client_details.get(key))
        quotation.attended_by = quotation.attended_by or "System"
        quotation.gst_no = quotation.gst_no or ""
        db.add(quotation)
        db.flush()
        _insert_rows(db, quotation, rows)
        audit.record(
            db, "quotation", quotation.id, "create", {"grand_total": grand_total, "rows": len(rows)}
        )
    logger.info("Quotation %s saved (%d rows, total %s)", quotation.id, len(rows), grand_total)
    return quotation


def update_quotation(
    db,
    quotation_id: int,
    client_details: Dict,
    rows: List[Dict],
    grand_total,
    additional_discount: Optional[str] = None,
    header_section: Optional[str] = None,
    bottom_section: Optional[str] = None,
) -> Quotation:
    grand_total = money(grand_total)
    with transaction(db):
        quotation = db.execute(
            select(Quotation).where(Quotation.id == quotation_id).with_for_update()
        ).scalars().first()
        if quotation is None:
            raise NotFoundError("Quotation not found", quotation_id=quotation_id)
        _check_rows(db, rows)

        # 1) devolver reserva anterior
        carried: Dict[int, object] = {}
        for old in quotation.items:
            stock_ledger.adjust_product_avail_qty(db, old.product_id, old.box or 0)
            if to_decimal(old.weight) > 0:
                carried[old.product_id] = quantity(carried.get(old.product_id, ZERO)) + quantity(
                    old.weight
                )
        dropped = set(carried) - {r["product_id"] for r in rows}
        if dropped:
            raise ValidationError(
                "Cannot remove products that were already dispatched",
                product_ids=sorted(dropped),
            )

        # 2) cabecera
        for column, key in _CLIENT_FIELDS.items():
            setattr(quotation, column, client_details.get(key))
        quotation.attended_by = quotation.attended_by or "System"
        quotation.gst_no = quotation.gst_no or ""
        quotation.header_section = header_section
        quotation.bottom_section = bottom_section
        quotation.additional_discount = additional_discount
        quotation.grand_total = grand_total
        quotation.due_amount = grand_total - money(quotation.paid_amount)

        # 3) reemplazar items
        quotation.items.clear()
        db.flush()
        _insert_rows(db, quotation, rows, carried)
        audit.record(
            db, "quotation", quotation.id, "update", {"grand_total": grand_total, "rows": len(rows)}
        )
    db.refresh(quotation)
    logger.info("Quotation %s updated, due %s", quotation.id, quotation.due_amount)
    return quotation


def settle_commission(db, quotation_id: int, architect_id: str, commission_amount) -> Quotation:
    commission_amount = money(commission_amount)
    if commission_amount < 0:
        raise ValidationError("Commission must not be negative")
    if not str(architect_id or "").strip():
        raise ValidationError("architectId is required")
    with transaction(db):
        quotation = db.execute(
            select(Quotation).where(Quotation.id == quotation_id).with_for_update()
        ).scalars().first()
        if quotation is None:
            raise NotFoundError("Quotation not found", quotation_id=quotation_id)
        if quotation.is_settled:
            raise ConflictError("Commission already settled", quotation_id=quotation_id)
        quotation.is_settled = True
        quotation.commission_amount = commission_amount
        db.add(
            ArchitectLedger(
                architect_id=str(architect_id),
                quotation_id=quotation.id,
                commission_amount=commission_amount,
            )
        )
        db.add(
            ArchitectSettlement(
                architect_id=str(architect_id),
                quotation_id=quotation.id,
                total_project_amount=money(quotation.grand_total),
                settled_amount=commission_amount,
            )
        )
        audit.record(
            db, "quotation", quotation.id, "settle_commission",
            {"architect_id": architect_id, "commission": commission_amount},
        )
    logger.info("Commission %s settled on quotation %s", commission_amount, quotation_id)
    return quotation


# ---------- read side ----------

def dispatched_totals(db, quotation_id: int) -> Dict[int, Tuple]:
    """{product_id: (boxes, qty)} dispatched so far against the quotation."""
    rows = db.execute(
        select(
            DeliveryChallanItem.product_id,
            func.coalesce(func.sum(DeliveryChallanItem.dispatch_boxes), 0),
            func.coalesce(func.sum(DeliveryChallanItem.dispatch_qty), 0),
        )
        .join(DeliveryChallan, DeliveryChallan.id == DeliveryChallanItem.challan_id)
        .where(DeliveryChallan.quotation_id == quotation_id)
        .group_by(DeliveryChallanItem.product_id)
    ).all()
    totals = defaultdict(lambda: (0, ZERO))
    for pid, boxes, qty in rows:
        totals[pid] = (int(boxes or 0), quantity(qty))
    return totals


def serialize_quotation(q: Quotation) -> Dict:
    return {
        "id": q.id,
        "client_name": q.client_name,
        "contact_no": q.contact_no,
        "alt_contact_no": q.alt_contact_no,
        "gst_no": q.gst_no,
        "email": q.email,
        "address": q.address,
        "attended_by": q.attended_by,
        "architect": q.architect,
        "additional_discount": q.additional_discount,
        "header_section": q.header_section,
        "bottom_section": q.bottom_section,
        "grand_total": as_number(q.grand_total),
        "paid_amount": as_number(q.paid_amount),
        "due_amount": as_number(q.due_amount),
        "is_settled": bool(q.is_settled),
        "commission_amount": as_number(q.commission_amount),
        "created_at": q.created_at.isoformat() if q.created_at else None,
    }


def serialize_item(it: QuotationItem, product_name: Optional[str] = None) -> Dict:
    return {
        "id": it.id,
        "product_id": it.product_id,
        "product_name": product_name,
        "size": it.size,
        "quality": it.quality,
        "rate": as_number(it.rate),
        "cov": as_number(it.cov),
        "box": it.box,
        "weight": as_number(it.weight),
        "discount": as_number(it.discount),
        "total": as_number(it.total),
        "area": as_number(it.area),
    }


def _full_view(db, q: Quotation) -> Dict:
    totals = dispatched_totals(db, q.id)
    data = serialize_quotation(q)
    items = []
    for it in q.items:
        product = db.get(Product, it.product_id)
        row = serialize_item(it, product.name if product else None)
        boxes, qty = totals[it.product_id]
        row["dispatched_boxes"] = boxes
        row["dispatched_qty"] = as_number(qty)
        row["remaining_boxes"] = max(0, (it.box or 0) - boxes)
        row["remaining_qty"] = as_number(max(ZERO, quantity(it.area) - qty))
        row.update(stock_ledger.batch_summary(db, it.product_id))
        items.append(row)
    data["items"] = items
    return data


def list_quotations_full(db, page: int = 1, limit: int = 10) -> Dict:
    page = max(1, page)
    limit = max(1, min(100, limit))
    total_items = db.execute(select(func.count(Quotation.id))).scalar() or 0
    quotations = (
        db.execute(
            select(Quotation).order_by(Quotation.id.desc()).limit(limit).offset((page - 1) * limit)
        )
        .scalars()
        .all()
    )
    return {
        "quotations": [_full_view(db, q) for q in quotations],
        "pagination": {
            "total_items": total_items,
            "total_pages": math.ceil(total_items / limit),
            "current_page": page,
            "limit": limit,
        },
    }


def get_quotation_full(db, quotation_id: int) -> Dict:
    q = db.get(Quotation, quotation_id)
    if q is None:
        raise NotFoundError("Quotation not found", quotation_id=quotation_id)
    return _full_view(db, q)


def architect_quotations(db, architect: str) -> List[Dict]:
    rows = (
        db.execute(
            select(Quotation).where(Quotation.architect == architect).order_by(Quotation.id.desc())
        )
        .scalars()
        .all()
    )
    out = []
    for q in rows:
        data = serialize_quotation(q)
        data["items"] = [serialize_item(it) for it in q.items]
        out.append(data)
    return out


def architect_ledger(db, architect_id: str) -> List[Dict]:
    if not architect_id or architect_id == "undefined":
        raise ValidationError("Valid architect id required")
    rows = db.execute(
        select(ArchitectLedger, Quotation.client_name, Quotation.grand_total)
        .join(Quotation, Quotation.id == ArchitectLedger.quotation_id)
        .where(ArchitectLedger.architect_id == str(architect_id))
        .order_by(ArchitectLedger.settled_at.desc(), ArchitectLedger.id.desc())
    ).all()
    return [
        {
            "id": led.id,
            "quotation_id": led.quotation_id,
            "commission_amount": as_number(led.commission_amount),
            "settled_at": led.settled_at.isoformat() if led.settled_at else None,
            "client_name": client_name,
            "quotation_total": as_number(grand_total),
        }
        for led, client_name, grand_total in rows
    ]

"""Payment requests and their one-time approval."""
import logging
from datetime import datetime
from typing import Dict, List

from sqlalchemy import select, update

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..db import transaction
from ..models.payment import APPROVED, PENDING, REJECTED, PaymentRequest
from ..models.quotation import Quotation
from ..utils.money import as_number, money
from . import audit

logger = logging.getLogger(__name__)

DECISIONS = (APPROVED, REJECTED)


def create_request(db, quotation_id: int, amount, payment_type: str = None, remark: str = None):
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    with transaction(db):
        if db.get(Quotation, quotation_id) is None:
            raise NotFoundError("Quotation not found", quotation_id=quotation_id)
        req = PaymentRequest(
            quotation_id=quotation_id,
            amount=amount,
            payment_type=payment_type,
            remark=remark,
            status=PENDING,
        )
        db.add(req)
        db.flush()
        audit.record(db, "payment_request", req.id, "create", {"amount": amount})
    logger.info("Payment request %s for quotation %s (%s)", req.id, quotation_id, amount)
    return req


def pending_requests(db) -> List[Dict]:
    rows = db.execute(
        select(PaymentRequest, Quotation.client_name)
        .join(Quotation, Quotation.id == PaymentRequest.quotation_id)
        .where(PaymentRequest.status == PENDING)
        .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
    ).all()
    return [dict(serialize_request(req), client_name=client_name) for req, client_name in rows]


def handle_status_update(db, request_id: int, status: str) -> PaymentRequest:
    """
    Approve or reject a pending request. Exactly one decision wins: the row is
    locked, and the status write only matches while it is still pending, so a
    racing second decision sees rowcount 0 and is refused.
    """
    if status not in DECISIONS:
        raise ValidationError("Status must be 'approved' or 'rejected'", requested_status=status)
    with transaction(db):
        req = db.execute(
            select(PaymentRequest).where(PaymentRequest.id == request_id).with_for_update()
        ).scalars().first()
        if req is None:
            raise NotFoundError("Payment request not found", request_id=request_id)
        if req.status != PENDING:
            raise ConflictError("Request already processed", http_status=400, request_id=request_id)

        res = db.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == req.id, PaymentRequest.status == PENDING)
            .values(status=status, decided_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if res.rowcount != 1:
            raise ConflictError("Request already processed", http_status=400, request_id=request_id)

        if status == APPROVED:
            quotation = db.execute(
                select(Quotation).where(Quotation.id == req.quotation_id).with_for_update()
            ).scalars().first()
            if quotation is None:
                raise NotFoundError("Quotation not found", quotation_id=req.quotation_id)
            quotation.paid_amount = money(quotation.paid_amount) + money(req.amount)
            quotation.due_amount = money(quotation.grand_total) - quotation.paid_amount
        audit.record(db, "payment_request", req.id, status, {"amount": req.amount})
    logger.info("Payment request %s %s", request_id, status)
    return req


def serialize_request(req: PaymentRequest) -> Dict:
    return {
        "id": req.id,
        "quotation_id": req.quotation_id,
        "amount": as_number(req.amount),
        "payment_type": req.payment_type,
        "remark": req.remark,
        "status": req.status,
        "created_at": req.created_at.isoformat() if req.created_at else None,
        "decided_at": req.decided_at.isoformat() if req.decided_at else None,
    }

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..core.schemas import PaymentRequestIn, StatusUpdateIn
from ..db import get_db
from ..services import payment_approval

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/request")
def request_payment(payload: PaymentRequestIn = Body(...), db: Session = Depends(get_db)):
    req = payment_approval.create_request(
        db, payload.quotation_id, payload.amount, payload.payment_type, payload.remark
    )
    return {"success": True, "message": "Payment request sent for approval", "request_id": req.id}


@router.get("/pending")
def pending(db: Session = Depends(get_db)):
    return {"success": True, "requests": payment_approval.pending_requests(db)}


@router.put("/update-status")
def update_status(payload: StatusUpdateIn = Body(...), db: Session = Depends(get_db)):
    req = payment_approval.handle_status_update(db, payload.request_id, payload.status)
    return {
        "success": True,
        "message": f"Payment {payload.status}",
        "request": payment_approval.serialize_request(req),
    }

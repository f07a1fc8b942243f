from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.schemas import ChallanIn, CommissionIn, QuotationIn
from ..db import get_db
from ..services import delivery_dispatch, quotation_engine

router = APIRouter(prefix="/api/Quotation", tags=["quotation"])


def _quotation_args(payload: QuotationIn) -> dict:
    return {
        "client_details": payload.client_details.model_dump(),
        "rows": [r.model_dump() for r in payload.rows],
        "grand_total": payload.grand_total,
        "additional_discount": payload.additional_discount,
        "header_section": payload.header_section,
        "bottom_section": payload.bottom_section,
    }


@router.post("/saveQuotation")
def save_quotation(payload: QuotationIn = Body(...), db: Session = Depends(get_db)):
    quotation = quotation_engine.save_quotation(db, **_quotation_args(payload))
    return {"success": True, "message": "Quotation saved", "quotation_id": quotation.id}


@router.put("/updateQuotation/{quotation_id}")
def update_quotation(
    quotation_id: int, payload: QuotationIn = Body(...), db: Session = Depends(get_db)
):
    quotation_engine.update_quotation(db, quotation_id, **_quotation_args(payload))
    return {
        "success": True,
        "message": "Quotation updated",
        "quotation": quotation_engine.get_quotation_full(db, quotation_id),
    }


@router.get("/list")
def list_quotations(page: int = 1, limit: Optional[int] = None, db: Session = Depends(get_db)):
    data = quotation_engine.list_quotations_full(db, page, limit or settings.default_page_limit)
    return {"success": True, **data}


@router.get("/print/{quotation_id}")
def print_quotation(quotation_id: int, db: Session = Depends(get_db)):
    return {"success": True, "quotation": quotation_engine.get_quotation_full(db, quotation_id)}


@router.post("/settle-commission")
def settle_commission(payload: CommissionIn = Body(...), db: Session = Depends(get_db)):
    quotation = quotation_engine.settle_commission(
        db, payload.quotation_id, str(payload.architect_id), payload.commission_amount
    )
    return {
        "success": True,
        "message": "Commission settled",
        "quotation": quotation_engine.serialize_quotation(quotation),
    }


@router.get("/architect/{architect}")
def architect_quotations(architect: str, db: Session = Depends(get_db)):
    return {"success": True, "quotations": quotation_engine.architect_quotations(db, architect)}


@router.get("/architect-ledger/{architect_id}")
def architect_ledger(architect_id: str, db: Session = Depends(get_db)):
    return {"success": True, "history": quotation_engine.architect_ledger(db, architect_id)}


# ---------- delivery challans ----------
@router.post("/generate-dc")
def generate_dc(payload: ChallanIn = Body(...), db: Session = Depends(get_db)):
    challan = delivery_dispatch.generate_delivery_challan(
        db,
        payload.quotation_id,
        payload.client,
        payload.contact,
        payload.address,
        payload.driver_details.model_dump(),
        [it.model_dump() for it in payload.items],
    )
    return {
        "success": True,
        "message": "Delivery challan generated",
        "challan_id": challan.id,
        "challan": delivery_dispatch.serialize_challan(challan),
    }


@router.get("/delivery-challan/list")
def list_challans(db: Session = Depends(get_db)):
    return {"success": True, "challans": delivery_dispatch.list_delivery_challans(db)}


@router.get("/delivery-challan/print/{challan_id}")
def print_challan(challan_id: int, db: Session = Depends(get_db)):
    return {"success": True, "challan": delivery_dispatch.get_delivery_challan(db, challan_id)}


@router.delete("/delivery-challan/delete/{challan_id}")
def delete_challan(challan_id: int, db: Session = Depends(get_db)):
    delivery_dispatch.delete_delivery_challan(db, challan_id)
    return {"success": True, "message": "Delivery challan deleted and stock restored"}

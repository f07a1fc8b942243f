from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..core.schemas import PurchaseIn, PurchaseUpdate
from ..db import get_db
from ..services import purchase_intake

router = APIRouter(prefix="/api/purchase", tags=["purchase"])


def _split(payload: PurchaseIn):
    header = payload.model_dump(exclude={"items", "purchase_id"})
    return header, [it.model_dump() for it in payload.items]


@router.post("/add")
def add_purchase(payload: PurchaseIn = Body(...), db: Session = Depends(get_db)):
    header, items = _split(payload)
    purchase = purchase_intake.add_purchase(db, header, items)
    return {
        "success": True,
        "message": "Purchase saved",
        "purchase_id": purchase.id,
        "bill_no": purchase.bill_no,
    }


@router.put("/update")
def update_purchase(payload: PurchaseUpdate = Body(...), db: Session = Depends(get_db)):
    header, items = _split(payload)
    purchase = purchase_intake.update_purchase(db, payload.purchase_id, header, items)
    return {
        "success": True,
        "message": "Purchase updated",
        "purchase": purchase_intake.serialize_purchase(purchase),
    }


@router.get("/list")
def list_purchases(db: Session = Depends(get_db)):
    return {"success": True, "purchases": purchase_intake.list_purchases(db)}


@router.get("/purchase/{purchase_id}")
def get_purchase(purchase_id: int, db: Session = Depends(get_db)):
    return {"success": True, "purchase": purchase_intake.get_purchase(db, purchase_id)}

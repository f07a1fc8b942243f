from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from ..core.schemas import ReconcileIn
from ..db import get_db, transaction
from ..models.product import Product
from ..services import stock_ledger
from ..utils.money import ZERO, as_number

router = APIRouter(prefix="/api/stock", tags=["stock"])


def _product_or_404(db, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", product_id=product_id)
    return product


@router.get("/{product_id}")
def stock_for_product(product_id: int, db: Session = Depends(get_db)):
    product = _product_or_404(db, product_id)
    ledger = stock_ledger.ledger_balances(db, product_id)
    return {
        "success": True,
        "product_id": product.id,
        "name": product.name,
        "avail_qty": as_number(product.avail_qty),
        "ledger_qty": as_number(sum(ledger.values(), ZERO)),
        **stock_ledger.batch_summary(db, product_id),
    }


@router.get("/{product_id}/moves")
def stock_moves(product_id: int, limit: int = 200, db: Session = Depends(get_db)):
    _product_or_404(db, product_id)
    limit = max(1, min(1000, limit))
    return {"success": True, "moves": stock_ledger.list_moves(db, product_id, limit)}


@router.post("/reconcile")
def reconcile(payload: Optional[ReconcileIn] = None, db: Session = Depends(get_db)):
    fix = payload.fix if payload is not None else False
    with transaction(db):
        drift = stock_ledger.reconcile(db, fix=fix)
    return {"success": True, "fixed": fix, "drift": drift}

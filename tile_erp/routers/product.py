from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.schemas import ProductIn, ProductUpdate
from ..db import get_db
from ..services import catalog

router = APIRouter(prefix="/api/product", tags=["product"])


def _batches(payload):
    return [b.model_dump() for b in payload.batches]


@router.post("/add")
def add_product(payload: ProductIn = Body(...), db: Session = Depends(get_db)):
    product = catalog.add_product(db, payload.model_dump(exclude={"batches"}), _batches(payload))
    return {
        "success": True,
        "message": "Product and batch data saved",
        "product_id": product.id,
        "product": catalog.serialize_product(product),
    }


@router.get("/list")
def list_products(page: int = 1, limit: Optional[int] = None, db: Session = Depends(get_db)):
    return {"success": True, **catalog.list_products(db, page, limit or settings.default_page_limit)}


@router.put("/update/{product_id}")
def update_product(
    product_id: int, payload: ProductUpdate = Body(...), db: Session = Depends(get_db)
):
    product = catalog.update_product(
        db, product_id, payload.model_dump(exclude={"batches"}), _batches(payload)
    )
    return {
        "success": True,
        "message": "Product updated",
        "product": catalog.serialize_product(product),
    }

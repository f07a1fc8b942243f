# tile_erp/ops/bootstrap.py
import argparse
import logging
import sys

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.log import configure_logging
from ..db import Base, SessionLocal, engine

logger = logging.getLogger(__name__)


def _import_models():
    """Registra todas las tablas en Base.metadata antes de create_all."""
    from ..models import audit, delivery, payment, product, purchase, quotation, stock  # noqa: F401


def ensure_schema(bind=None):
    _import_models()
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Schema ready on %s", bind.url)


def get_or_create(session: Session, model, defaults=None, **kwargs):
    inst = session.query(model).filter_by(**kwargs).first()
    if inst:
        return inst, False
    params = dict(kwargs)
    if defaults:
        params.update(defaults)
    inst = model(**params)
    session.add(inst)
    session.commit()
    session.refresh(inst)
    return inst, True


def seed_demo(db: Session):
    """Producto demo con un lote y una cotización que lo reserva."""
    from ..models.product import Product
    from ..models.quotation import Quotation
    from ..services import catalog, quotation_engine

    product = db.query(Product).filter_by(name="Vitrified 600x600").first()
    if product is None:
        product = catalog.add_product(
            db,
            {"name": "Vitrified 600x600", "size": "600x600", "quality": "Premium", "rate": 45},
            [{"batch_no": "A1", "qty": 20, "location": "Godown-1"}],
        )
    quotation, created = get_or_create(
        db, Quotation, client_name="Demo Client", defaults={"grand_total": 0, "due_amount": 0}
    )
    if created:
        quotation_engine.update_quotation(
            db,
            quotation.id,
            {"name": "Demo Client", "contact_no": "9999999999"},
            [{"product_id": product.id, "box": 5, "cov": 4, "rate": 45, "area": 20, "total": 900}],
            grand_total=900,
        )
    logger.info("Seed OK | product_id=%s quotation_id=%s", product.id, quotation.id)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create the schema, optionally seed demo data")
    parser.add_argument("--seed", action="store_true", help="insert a demo product and quotation")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    ensure_schema()
    if args.seed:
        db = SessionLocal()
        try:
            seed_demo(db)
        finally:
            db.close()
    logger.info("Bootstrap done")
    return 0


if __name__ == "__main__":
    sys.exit(main())

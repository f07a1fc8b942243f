from fastapi import FastAPI

from .core.config import settings
from .core.errors import install_error_handlers
from .core.log import configure_logging
from .middleware.idempotency import install_idempotency
from .ops.bootstrap import ensure_schema
from .routers import health, payment, product, purchase, quotation, stock

configure_logging(settings.log_level)

# Crea tablas faltantes una sola vez al arrancar
ensure_schema()

app = FastAPI(title=settings.app_name, version=settings.app_version)

install_error_handlers(app)
install_idempotency(app)

app.include_router(health.router)
app.include_router(product.router)
app.include_router(stock.router)
app.include_router(purchase.router)
app.include_router(quotation.router)
app.include_router(payment.router)

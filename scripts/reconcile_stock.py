"""
Compara product_batch.qty contra la suma de stock_move por lote.
Uso: python scripts/reconcile_stock.py [--fix]
"""
import json
import sys

from tile_erp.core.config import settings
from tile_erp.core.log import configure_logging
from tile_erp.db import SessionLocal, transaction
from tile_erp.ops.bootstrap import ensure_schema
from tile_erp.services import stock_ledger


def main():
    fix = "--fix" in sys.argv[1:]
    configure_logging(settings.log_level)
    ensure_schema()
    s = SessionLocal()
    try:
        with transaction(s):
            drift = stock_ledger.reconcile(s, fix=fix)
    finally:
        s.close()
    print(json.dumps({"fixed": fix, "drift": drift}, indent=2))
    return 1 if drift and not fix else 0


if __name__ == "__main__":
    sys.exit(main())

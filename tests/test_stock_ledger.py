from decimal import Decimal

import pytest
from sqlalchemy import select, update

from tile_erp.core.config import settings
from tile_erp.core.errors import ConcurrencyConflictError, InsufficientStockError, ValidationError
from tile_erp.db import transaction
from tile_erp.models.product import Product, ProductBatch
from tile_erp.models.stock import StockMove
from tile_erp.services import stock_ledger


def _product(db, avail=0):
    with transaction(db):
        p = Product(name="Matt 300x300", avail_qty=Decimal(avail))
        db.add(p)
        db.flush()
        pid = p.id
    return pid


def _qty(db, pid, batch_no):
    return db.execute(
        select(ProductBatch.qty).where(
            ProductBatch.product_id == pid, ProductBatch.batch_no == batch_no
        )
    ).scalar()


def test_credit_creates_batch_then_keeps_location(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A1", 20, location="Godown-1")
    with transaction(db):
        batch = stock_ledger.credit_batch(db, pid, "A1", 5, location="Godown-9")
    assert batch.location == "Godown-1"
    assert _qty(db, pid, "A1") == Decimal("25")
    moves = db.execute(select(StockMove).where(StockMove.product_id == pid)).scalars().all()
    assert [m.delta for m in moves] == [Decimal("20"), Decimal("5")]


def test_fifo_uses_lowest_batch_no_first(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "B1", 10)
        stock_ledger.credit_batch(db, pid, "A1", 5)
    with transaction(db):
        taken = stock_ledger.debit_batches_fifo(db, pid, 8, ("test", 1))
        result = [(b.batch_no, q) for b, q in taken]
    assert result == [("A1", Decimal("5")), ("B1", Decimal("3"))]
    assert _qty(db, pid, "A1") == 0
    assert _qty(db, pid, "B1") == Decimal("7")


def test_fifo_is_string_ordered(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A2", 4)
        stock_ledger.credit_batch(db, pid, "A10", 4)
    with transaction(db):
        taken = stock_ledger.debit_batches_fifo(db, pid, 4)
        first = taken[0][0].batch_no
    assert first == "A10"


def test_shortfall_rejected_without_touching_batches(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A1", 5)
    with pytest.raises(InsufficientStockError) as exc:
        with transaction(db):
            stock_ledger.debit_batches_fifo(db, pid, 12)
    assert exc.value.available == Decimal("5")
    assert _qty(db, pid, "A1") == Decimal("5")


def test_warn_policy_keeps_undershoot(db, monkeypatch, caplog):
    monkeypatch.setattr(settings, "stock_policy", stock_ledger.POLICY_WARN)
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A1", 5)
    with caplog.at_level("WARNING", logger="tile_erp.services.stock_ledger"):
        with transaction(db):
            taken = stock_ledger.debit_batches_fifo(db, pid, 12)
            total = sum(q for _, q in taken)
    assert total == Decimal("5")
    assert _qty(db, pid, "A1") == 0
    assert "under-shoot" in caplog.text


def test_negative_debit_is_invalid(db):
    pid = _product(db)
    with pytest.raises(ValidationError):
        with transaction(db):
            stock_ledger.debit_batches_fifo(db, pid, -1)


def test_restore_deductions_is_exact(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A1", 6)
        stock_ledger.credit_batch(db, pid, "A2", 6)
    with transaction(db):
        taken = stock_ledger.debit_batches_fifo(db, pid, 9)
        pairs = [(b.id, q) for b, q in taken]
    # nuevo ingreso entre despacho y reversa
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A0", 3)
    with transaction(db):
        stock_ledger.restore_deductions(db, pairs)
    assert _qty(db, pid, "A0") == Decimal("3")
    assert _qty(db, pid, "A1") == Decimal("6")
    assert _qty(db, pid, "A2") == Decimal("6")


def test_avail_qty_never_negative(db):
    pid = _product(db, avail=3)
    with transaction(db):
        assert stock_ledger.adjust_product_avail_qty(db, pid, -5) is True
    assert db.get(Product, pid).avail_qty == 0
    with transaction(db):
        assert stock_ledger.adjust_product_avail_qty(db, 999999, 1) is False


def test_reconcile_reports_and_fixes_drift(db):
    pid = _product(db)
    with transaction(db):
        batch = stock_ledger.credit_batch(db, pid, "A1", 10)
        batch_id = batch.id
    with transaction(db):
        assert stock_ledger.reconcile(db) == []
    with transaction(db):
        db.execute(update(ProductBatch).where(ProductBatch.id == batch_id).values(qty=Decimal("7")))
    with transaction(db):
        drift = stock_ledger.reconcile(db)
    assert drift == [
        {"batch_id": batch_id, "product_id": pid, "batch_no": "A1", "batch_qty": 7, "ledger_qty": 10}
    ]
    with transaction(db):
        stock_ledger.reconcile(db, fix=True)
    db.expire_all()
    assert _qty(db, pid, "A1") == Decimal("10")
    with transaction(db):
        assert stock_ledger.reconcile(db) == []


def test_stale_batch_write_is_a_conflict(db):
    pid = _product(db)
    with transaction(db):
        stock_ledger.credit_batch(db, pid, "A1", 10)
    with pytest.raises(ConcurrencyConflictError) as exc:
        with transaction(db):
            batch = stock_ledger.get_batch(db, pid, "A1")
            # otro escritor cambia la fila después de leerla
            db.execute(
                update(ProductBatch)
                .where(ProductBatch.id == batch.id)
                .values(qty=Decimal("4"))
                .execution_options(synchronize_session=False)
            )
            stock_ledger.apply_delta(db, batch, -3, "dispatch")
    assert (exc.value.kind, exc.value.http_status) == ("concurrent_update", 409)
    assert _qty(db, pid, "A1") == Decimal("10")
    moves = db.execute(select(StockMove).where(StockMove.product_id == pid)).scalars().all()
    assert len(moves) == 1


def test_open_read_session_does_not_block_writes(db, api):
    pid = _product(db)
    assert db.get(Product, pid).name == "Matt 300x300"
    # la sesión sigue abierta tras la lectura
    body = {"items": [{"productId": pid, "qty": 4, "batchNo": "R1"}]}
    st, js = api.post("/api/purchase/add", body)
    assert st == 200, js
    assert _qty(db, pid, "R1") == Decimal("4")

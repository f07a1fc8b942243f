import concurrent.futures as cf
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import update

from tile_erp.core.errors import ConcurrencyConflictError
from tile_erp.db import transaction
from tile_erp.models.delivery import DispatchDeduction
from tile_erp.models.product import ProductBatch
from tile_erp.models.quotation import QuotationItem
from tile_erp.services import delivery_dispatch, stock_ledger


def _stock(api, pid):
    st, js = api.get(f"/api/stock/{pid}")
    assert st == 200, js
    return js


def _qty(api, pid, batch_no):
    return next(b["qty"] for b in _stock(api, pid)["batches"] if b["batch_no"] == batch_no)


def _challan(api, qid, items, headers=None):
    body = {
        "quotationId": qid,
        "client": "Mehta Residence",
        "contact": "9876543210",
        "address": "Plot 12, Ring Road",
        "driverDetails": {"deliveryBoy": "Ravi", "driverContact": "9000000001", "tempo": "GJ01AB1234"},
        "items": items,
    }
    return api.post("/api/Quotation/generate-dc", body, headers=headers)


def _row(pid, box, cov=4):
    return {"productId": pid, "box": box, "cov": cov, "rate": 45, "area": box * cov}


def test_dispatch_and_delete_round_trip(api, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    assert _stock(api, pid)["avail_qty"] == 5

    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 3, "remainingStock": 8}])
    assert st == 200, js
    challan_id = js["challan_id"]
    item = js["challan"]["items"][0]
    assert (item["dispatch_boxes"], item["dispatch_qty"], item["product_name"]) == (3, 12, "Vitrified 600x600")
    assert item["batches"][0]["qty"] == 12
    assert _qty(api, pid, "A1") == 8
    assert _stock(api, pid)["avail_qty"] == 2

    st, js = api.get(f"/api/Quotation/print/{qid}")
    line = js["quotation"]["items"][0]
    assert line["weight"] == 12
    assert (line["dispatched_boxes"], line["dispatched_qty"]) == (3, 12)
    assert (line["remaining_boxes"], line["remaining_qty"]) == (2, 8)

    st, js = api.delete(f"/api/Quotation/delivery-challan/delete/{challan_id}")
    assert st == 200, js
    assert _qty(api, pid, "A1") == 20
    assert _stock(api, pid)["avail_qty"] == 5
    st, js = api.get(f"/api/Quotation/print/{qid}")
    line = js["quotation"]["items"][0]
    assert (line["weight"], line["dispatched_boxes"], line["remaining_boxes"]) == (0, 0, 5)


def test_fifo_spans_batches_and_reverses_exactly(api, db, make_product, make_quotation):
    pid = make_product(batches=(("A2", 10, "G2"), ("A1", 10, "G1")), avail_qty=10)
    qid = make_quotation([_row(pid, 5)])

    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 4}])
    assert st == 200, js
    assert (_qty(api, pid, "A1"), _qty(api, pid, "A2")) == (0, 4)
    rows = db.query(DispatchDeduction).count()
    assert rows == 2

    # llega un lote más bajo antes de la reversa
    st, _ = api.post("/api/purchase/add", {"items": [{"productId": pid, "qty": 5, "batchNo": "A0"}]})
    assert st == 200

    st, _ = api.delete(f"/api/Quotation/delivery-challan/delete/{js['challan_id']}")
    assert st == 200
    assert (_qty(api, pid, "A0"), _qty(api, pid, "A1"), _qty(api, pid, "A2")) == (5, 10, 10)

    st, js = api.post("/api/stock/reconcile", {"fix": False})
    assert st == 200
    assert js["drift"] == []


def test_insufficient_stock_rolls_back(api, make_product, make_quotation):
    pid = make_product(batches=(("A1", 10, "G1"),), avail_qty=10)
    qid = make_quotation([_row(pid, 5)])

    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 3}])
    assert st == 409
    assert js["error"] == "insufficient_stock"
    assert _qty(api, pid, "A1") == 10
    assert _stock(api, pid)["avail_qty"] == 5
    st, js = api.get("/api/Quotation/delivery-challan/list")
    assert js["challans"] == []


def test_item_checks(api, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    stranger = make_product(name="Not quoted", avail_qty=10)
    qid = make_quotation([_row(pid, 5)])

    st, js = _challan(api, qid, [{"productId": stranger, "dispatchBoxes": 1}])
    assert st == 400
    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 0}])
    assert st == 400
    st, js = _challan(api, 31337, [{"productId": pid, "dispatchBoxes": 1}])
    assert st == 404
    st, js = _challan(api, qid, [{"dispatchBoxes": 1}])
    assert st == 422


def test_cannot_dispatch_more_than_quoted(api, make_product, make_quotation):
    pid = make_product(batches=(("A1", 100, "G1"),), avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    assert _challan(api, qid, [{"productId": pid, "dispatchBoxes": 3}])[0] == 200

    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 3}])
    assert st == 400
    assert js["remaining_boxes"] == 2
    assert _qty(api, pid, "A1") == 88

    st, js = _challan(
        api, qid, [{"productId": pid, "dispatchBoxes": 1}, {"productId": pid, "dispatchBoxes": 2}]
    )
    assert st == 400
    assert _qty(api, pid, "A1") == 88


def test_dispatch_progress_survives_quotation_edit(api, make_product, make_quotation):
    pid = make_product(batches=(("A1", 100, "G1"),), avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    _challan(api, qid, [{"productId": pid, "dispatchBoxes": 2}])

    body = {"clientDetails": {"name": "Mehta"}, "rows": [_row(pid, 6)], "grandTotal": 1000}
    st, js = api.put(f"/api/Quotation/updateQuotation/{qid}", body)
    assert st == 200, js
    line = js["quotation"]["items"][0]
    assert (line["weight"], line["remaining_boxes"]) == (8, 4)

    body["rows"] = []
    st, js = api.put(f"/api/Quotation/updateQuotation/{qid}", body)
    assert st == 400


def test_print_and_delete_missing(api, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    qid = make_quotation([_row(pid, 2)])
    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 1}])
    st, js = api.get(f"/api/Quotation/delivery-challan/print/{js['challan_id']}")
    assert st == 200
    challan = js["challan"]
    assert challan["delivery_boy"] == "Ravi"
    assert challan["quotation"]["id"] == qid
    assert challan["quotation_items"][0]["box"] == 2

    assert api.get("/api/Quotation/delivery-challan/print/999")[0] == 404
    st, js = api.delete("/api/Quotation/delivery-challan/delete/999")
    assert st == 404
    assert js["error"] == "not_found"


def test_driver_contact_key_from_form(api, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    body = {
        "quotationId": qid,
        "driverDetails": {"deliveryBoy": "Ravi", "contact": "9000000002"},
        "items": [{"productId": pid, "dispatchBoxes": 1}],
    }
    st, js = api.post("/api/Quotation/generate-dc", body)
    assert st == 200, js
    assert (js["challan"]["delivery_boy"], js["challan"]["driver_contact"]) == ("Ravi", "9000000002")


def test_concurrent_dispatch_same_idempotency_key(api, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    headers = {"Idempotency-Key": uuid.uuid4().hex}

    def dispatch(_):
        st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 2}], headers=headers)
        assert st == 200, js
        return js["challan_id"]

    with cf.ThreadPoolExecutor(max_workers=2) as ex:
        ids = list(ex.map(dispatch, range(2)))

    # una sola ejecución; la otra es replay
    assert len(set(ids)) == 1
    st, js = api.get("/api/Quotation/delivery-challan/list")
    assert len(js["challans"]) == 1
    assert _qty(api, pid, "A1") == 12


def test_stale_weight_write_is_a_conflict(api, db, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    make_quotation([_row(pid, 5)])
    with pytest.raises(ConcurrencyConflictError):
        with transaction(db):
            item = db.query(QuotationItem).filter(QuotationItem.product_id == pid).one()
            db.execute(
                update(QuotationItem)
                .where(QuotationItem.id == item.id)
                .values(weight=Decimal("8"))
                .execution_options(synchronize_session=False)
            )
            delivery_dispatch._shift_weight(db, item, 4)
    st, js = api.get("/api/Quotation/delivery-challan/list")
    assert js["challans"] == []


def test_batch_changed_mid_dispatch_is_409(api, monkeypatch, make_product, make_quotation):
    pid = make_product(avail_qty=10)
    qid = make_quotation([_row(pid, 5)])
    write_qty = stock_ledger._write_qty

    def racing_write(db, batch, seen, new_qty):
        # otro escritor toca el lote entre la lectura y la escritura
        db.execute(
            update(ProductBatch)
            .where(ProductBatch.id == batch.id)
            .values(qty=seen - 1)
            .execution_options(synchronize_session=False)
        )
        write_qty(db, batch, seen, new_qty)

    monkeypatch.setattr(stock_ledger, "_write_qty", racing_write)
    st, js = _challan(api, qid, [{"productId": pid, "dispatchBoxes": 2}])
    monkeypatch.undo()
    assert st == 409
    assert js["error"] == "concurrent_update"
    assert _qty(api, pid, "A1") == 20
    assert _stock(api, pid)["avail_qty"] == 5
    st, js = api.get("/api/Quotation/delivery-challan/list")
    assert js["challans"] == []

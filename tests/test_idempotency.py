import uuid

from tile_erp.middleware.idempotency import key_locks, response_store


def _key():
    return uuid.uuid4().hex


def test_save_quotation_replays_same_key(api, make_product):
    pid = make_product(avail_qty=10)
    body = {"clientDetails": {"name": "Shah"}, "rows": [{"productId": pid, "box": 3, "cov": 4}], "grandTotal": 90}
    headers = {"Idempotency-Key": _key()}

    st1, js1 = api.post("/api/Quotation/saveQuotation", body, headers=headers)
    r2 = api.client.post("/api/Quotation/saveQuotation", json=body, headers=headers)
    assert st1 == 200 and r2.status_code == 200
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert r2.json()["quotation_id"] == js1["quotation_id"]
    assert r2.json()["replay"] is True

    st, js = api.get(f"/api/stock/{pid}")
    assert js["avail_qty"] == 7
    st, js = api.get("/api/Quotation/list")
    assert len(js["quotations"]) == 1


def test_failed_request_is_not_cached(api, make_product):
    pid = make_product(avail_qty=10)
    headers = {"Idempotency-Key": _key()}
    bad = {"quotationId": 999, "amount": 10}
    assert api.post("/api/payment/request", bad, headers=headers)[0] == 404

    body = {"clientDetails": {"name": "Shah"}, "rows": [{"productId": pid, "box": 1}], "grandTotal": 10}
    st, js = api.post("/api/Quotation/saveQuotation", body)
    good = {"quotationId": js["quotation_id"], "amount": 10}
    r = api.client.post("/api/payment/request", json=good, headers=headers)
    assert r.status_code == 200
    assert "Idempotent-Replay" not in r.headers


def test_without_key_every_post_runs(api, make_product):
    pid = make_product(batches=())
    body = {"items": [{"productId": pid, "qty": 4, "batchNo": "Z1"}]}
    assert api.post("/api/purchase/add", body)[0] == 200
    assert api.post("/api/purchase/add", body)[0] == 200
    st, js = api.get(f"/api/stock/{pid}")
    assert js["current_stock"] == 8


def test_key_locks_are_dropped_after_use(api, make_product):
    pid = make_product(batches=())
    before = len(response_store)
    for n in range(5):
        body = {"items": [{"productId": pid, "qty": 1, "batchNo": f"K{n}"}]}
        assert api.post("/api/purchase/add", body, headers={"Idempotency-Key": _key()})[0] == 200
    assert len(key_locks) == 0
    assert len(response_store) == min(before + 5, response_store.max_entries)

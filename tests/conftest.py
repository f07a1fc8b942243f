import os
import tempfile

import pytest

# la app lee DATABASE_URL al importarse: fijarla antes de cualquier import de tile_erp
_TMP = tempfile.mkdtemp(prefix="tile_erp_tests_")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP, "test.db").replace("\\", "/")
os.environ.setdefault("DB_BUSY_TIMEOUT", "30")

from fastapi.testclient import TestClient  # noqa: E402

from tile_erp.db import Base, SessionLocal, engine  # noqa: E402
from tile_erp.main import app  # noqa: E402


class Api:
    """Thin wrapper returning (status, json) like the live smoke tests."""

    def __init__(self, client: TestClient):
        self.client = client

    def _call(self, method, path, body=None, headers=None):
        r = self.client.request(method, path, json=body, headers=headers or {})
        try:
            js = r.json()
        except ValueError:
            js = {}
        return r.status_code, js

    def post(self, path, body=None, headers=None):
        return self._call("POST", path, body, headers)

    def put(self, path, body=None, headers=None):
        return self._call("PUT", path, body, headers)

    def get(self, path):
        return self._call("GET", path)

    def delete(self, path):
        return self._call("DELETE", path)


@pytest.fixture(scope="session")
def client():
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def make_product(api):
    def _make(name="Vitrified 600x600", batches=(("A1", 20, "Godown-1"),), avail_qty=0, **extra):
        body = {
            "name": name,
            "size": extra.pop("size", "600x600"),
            "quality": extra.pop("quality", "Premium"),
            "rate": extra.pop("rate", 45),
            "availQty": avail_qty,
            "batches": [{"batchNo": b, "qty": q, "location": loc} for b, q, loc in batches],
        }
        body.update(extra)
        st, js = api.post("/api/product/add", body)
        assert st == 200, js
        return js["product_id"]

    return _make


@pytest.fixture
def make_quotation(api):
    def _make(rows, grand_total=1000, client_name="Mehta Residence", architect=None, headers=None):
        body = {
            "clientDetails": {"name": client_name, "contactNo": "9876543210", "architect": architect},
            "rows": rows,
            "grandTotal": grand_total,
        }
        st, js = api.post("/api/Quotation/saveQuotation", body, headers=headers)
        assert st == 200, js
        return js["quotation_id"]

    return _make

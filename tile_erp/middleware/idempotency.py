"""Replay of ledger POSTs that carry an Idempotency-Key header."""
import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.config import settings

logger = logging.getLogger(__name__)

# ruta -> clave que debe traer una respuesta exitosa
ALLOW = {
    "/api/purchase/add": "purchase_id",
    "/api/Quotation/saveQuotation": "quotation_id",
    "/api/Quotation/generate-dc": "challan_id",
    "/api/payment/request": "request_id",
}

KEY_HEADERS = ("Idempotency-Key", "IdempotencyKey")


class _Stored:
    __slots__ = ("status", "headers", "media_type", "body", "expires_at")

    def __init__(self, response: Response, body: bytes, ttl: int):
        self.status = response.status_code
        self.headers = dict(response.headers)
        self.media_type = response.media_type
        self.body = body
        self.expires_at = time.monotonic() + ttl

    def expired(self) -> bool:
        return self.expires_at < time.monotonic()


class ResponseStore:
    """Bounded store of successful responses; the oldest entry goes first."""

    def __init__(self, ttl: int, max_entries: int):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: Dict[str, _Stored] = {}

    def lookup(self, key: str) -> Optional[_Stored]:
        entry = self._entries.get(key)
        if entry is not None and entry.expired():
            del self._entries[key]
            return None
        return entry

    def keep(self, key: str, response: Response, body: bytes) -> None:
        while len(self._entries) >= self.max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = _Stored(response, body, self.ttl)

    def __len__(self):
        return len(self._entries)


class KeyedLocks:
    """
    One asyncio lock per key, alive only while someone holds or waits on it.
    Each entry carries a count of its users and is dropped when that reaches 0.
    """

    def __init__(self):
        self._held: Dict[str, list] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        slot = self._held.setdefault(key, [asyncio.Lock(), 0])
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                self._held.pop(key, None)

    def __len__(self):
        return len(self._held)


def _without_length(headers) -> dict:
    return {k: v for k, v in dict(headers).items() if k.lower() != "content-length"}


def _decode(body: bytes):
    try:
        return json.loads(body.decode("utf-8"))
    except ValueError:
        return None


def _replay(entry: _Stored) -> Response:
    body = entry.body
    js = _decode(body)
    if isinstance(js, dict):
        js.setdefault("replay", True)
        body = json.dumps(js).encode("utf-8")
    headers = _without_length(entry.headers)
    headers["Idempotent-Replay"] = "true"
    return Response(content=body, status_code=entry.status, media_type=entry.media_type, headers=headers)


async def _drain(response) -> bytes:
    chunks = [chunk async for chunk in response.body_iterator]
    return b"".join(chunks)


response_store = ResponseStore(settings.idempotency_ttl, settings.idempotency_max_entries)
key_locks = KeyedLocks()


class IdempotencyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        success_key = ALLOW.get(request.url.path) if request.method == "POST" else None
        idem_key = next((request.headers[h] for h in KEY_HEADERS if request.headers.get(h)), None)
        if success_key is None or idem_key is None:
            return await call_next(request)

        store_key = f"POST:{request.url.path}:{idem_key}"
        async with key_locks.hold(store_key):
            # el primero que entra ejecuta; los demás reciben la copia
            entry = response_store.lookup(store_key)
            if entry is not None:
                logger.info("Idempotent replay for %s", store_key)
                return _replay(entry)

            response = await call_next(request)
            body = await _drain(response)
            fresh = Response(
                content=body,
                status_code=response.status_code,
                media_type=response.media_type,
                headers=_without_length(response.headers),
            )
            js = _decode(body) if response.status_code == 200 else None
            if isinstance(js, dict) and success_key in js:
                response_store.keep(store_key, fresh, body)
            return fresh


def install_idempotency(app):
    app.add_middleware(IdempotencyMiddleware)

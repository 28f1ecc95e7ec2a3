import asyncio
import json

import httpx
import pytest

from comandera.errors import OrderNotFoundError, StoreError
from comandera.store import ORDER_SELECT, MemoryStore, PostgrestStore


def _store(handler):
    client = httpx.AsyncClient(base_url="https://pos.example.co/rest/v1", transport=httpx.MockTransport(handler))
    return PostgrestStore("https://pos.example.co", "key", client=client)


def test_fetch_order_uses_nested_select(taco_order):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=[taco_order])

    async def run():
        store = _store(handler)
        try:
            return await store.fetch_order("order-000123")
        finally:
            await store.close()

    assert asyncio.run(run()) == taco_order
    assert seen["path"] == "/rest/v1/orders"
    assert seen["params"] == {"select": ORDER_SELECT, "id": "eq.order-000123"}


def test_fetch_order_missing():
    async def run():
        store = _store(lambda request: httpx.Response(200, json=[]))
        try:
            await store.fetch_order("nope")
        finally:
            await store.close()

    with pytest.raises(OrderNotFoundError):
        asyncio.run(run())


def test_http_errors_become_store_errors():
    async def run():
        store = _store(lambda request: httpx.Response(503, text="maintenance"))
        try:
            await store.list_printers("branch-1")
        finally:
            await store.close()

    with pytest.raises(StoreError):
        asyncio.run(run())


def test_update_category_printer_patches_row():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    async def run():
        store = _store(handler)
        try:
            await store.update_category_printer("c1", "p-bar")
        finally:
            await store.close()

    asyncio.run(run())

    assert seen == {"method": "PATCH", "params": {"id": "eq.c1"}, "body": {"printer_id": "p-bar"}}


def test_memory_store_rejects_unknown_rows():
    store = MemoryStore()

    with pytest.raises(StoreError):
        asyncio.run(store.update_printer("missing", {"name": "x"}))
    with pytest.raises(StoreError):
        asyncio.run(store.update_category_printer("missing", None))


def test_memory_store_returns_copies(taco_order):
    store = MemoryStore(orders=[taco_order])

    order = asyncio.run(store.fetch_order("order-000123"))
    order["order_items"].clear()

    assert len(taco_order["order_items"]) == 2

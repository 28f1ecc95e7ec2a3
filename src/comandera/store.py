"""
External store adapters.

The print core only needs a handful of reads and writes; ``PrintStore``
describes them. ``PostgrestStore`` talks to a Supabase/PostgREST backend
over httpx, ``MemoryStore`` keeps everything in process for tests and
offline use.

Order rows follow the nested PostgREST shape::

    {
        "id": "...", "total_amount": 116.0, "notes": None, "customer_info": {...},
        "tables": {"name": "Mesa 4", "areas": {"name": "Terraza"}},
        "user": {"full_name": "Ana"},
        "order_items": [
            {"quantity": 2, "notes": "sin cebolla", "price_at_order": 35.0,
             "products": {"name": "Taco", "categories": {"id": "c1", "name": "Entradas", "printer_id": None}}},
        ],
    }
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .config import config
from .errors import OrderNotFoundError, StoreError


ORDER_SELECT = (
    "*,"
    "tables(id,name,areas(name)),"
    "user:profiles(full_name),"
    "order_items(quantity,notes,price_at_order,products(name,categories(id,name,printer_id)))"
)


class PrintStore(Protocol):
    async def fetch_order(self, order_id: str) -> Dict[str, Any]: ...

    async def list_printers(self, branch_id: str) -> List[Dict[str, Any]]: ...

    async def insert_printer(self, row: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_printer(self, printer_id: str, row: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete_printer(self, printer_id: str) -> None: ...

    async def list_categories(self) -> List[Dict[str, Any]]: ...

    async def update_category_printer(self, category_id: str, printer_id: Optional[str]) -> None: ...

    async def fetch_business_settings(self) -> Optional[Dict[str, Any]]: ...


class PostgrestStore:
    """
    Supabase/PostgREST adapter.

    Args:
        base_url: Project URL, e.g. https://xyz.supabase.co
        api_key: Service or anon key sent as ``apikey`` and bearer token
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject a mock transport)
    """

    def __init__(self, base_url: str, api_key: str, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self.client = client or httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1", headers=headers, timeout=timeout
        )

    @classmethod
    def from_config(cls) -> "PostgrestStore":
        if not config.SUPABASE_URL or not config.SUPABASE_KEY:
            raise StoreError("SUPABASE_URL and SUPABASE_KEY are required")
        return cls(config.SUPABASE_URL, config.SUPABASE_KEY)

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            raise StoreError(f"{method} {path} returned {response.status_code}: {response.text}")
        if not response.content:
            return None
        return response.json()

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        rows = await self._request("GET", "/orders", params={"select": ORDER_SELECT, "id": f"eq.{order_id}"})
        if not rows:
            raise OrderNotFoundError(order_id)
        return rows[0]

    async def list_printers(self, branch_id: str) -> List[Dict[str, Any]]:
        return await self._request(
            "GET", "/printers",
            params={"select": "*", "branch_id": f"eq.{branch_id}", "order": "name"},
        ) or []

    async def insert_printer(self, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "POST", "/printers", json=[row], headers={"Prefer": "return=representation"}
        )
        return rows[0]

    async def update_printer(self, printer_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH", "/printers", params={"id": f"eq.{printer_id}"}, json=row,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise StoreError(f"Printer {printer_id} not found")
        return rows[0]

    async def delete_printer(self, printer_id: str) -> None:
        await self._request("DELETE", "/printers", params={"id": f"eq.{printer_id}"})

    async def list_categories(self) -> List[Dict[str, Any]]:
        return await self._request(
            "GET", "/categories", params={"select": "id,name,printer_id", "order": "name"}
        ) or []

    async def update_category_printer(self, category_id: str, printer_id: Optional[str]) -> None:
        await self._request(
            "PATCH", "/categories", params={"id": f"eq.{category_id}"}, json={"printer_id": printer_id}
        )

    async def fetch_business_settings(self) -> Optional[Dict[str, Any]]:
        rows = await self._request("GET", "/business_settings", params={"select": "*", "limit": "1"})
        return rows[0] if rows else None


class MemoryStore:
    """In-process store with the same contract as ``PostgrestStore``."""

    def __init__(self, orders: Optional[List[Dict[str, Any]]] = None,
                 printers: Optional[List[Dict[str, Any]]] = None,
                 categories: Optional[List[Dict[str, Any]]] = None,
                 settings: Optional[Dict[str, Any]] = None):
        self.orders = {str(order["id"]): order for order in (orders or [])}
        self.printers = [dict(row) for row in (printers or [])]
        self.categories = [dict(row) for row in (categories or [])]
        self.settings = settings
        self.calls: List[str] = []

    async def close(self):
        return None

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        self.calls.append("fetch_order")
        order = self.orders.get(str(order_id))
        if order is None:
            raise OrderNotFoundError(order_id)
        return copy.deepcopy(order)

    async def list_printers(self, branch_id: str) -> List[Dict[str, Any]]:
        self.calls.append("list_printers")
        rows = [dict(row) for row in self.printers if row.get("branch_id") == branch_id]
        return sorted(rows, key=lambda row: row.get("name") or "")

    async def insert_printer(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append("insert_printer")
        saved = dict(row, id=str(uuid.uuid4()))
        saved.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.printers.append(saved)
        return dict(saved)

    async def update_printer(self, printer_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append("update_printer")
        for index, existing in enumerate(self.printers):
            if existing.get("id") == printer_id:
                merged = dict(existing)
                merged.update(row)
                merged["id"] = printer_id
                self.printers[index] = merged
                return dict(self.printers[index])
        raise StoreError(f"Printer {printer_id} not found")

    async def delete_printer(self, printer_id: str) -> None:
        self.calls.append("delete_printer")
        self.printers = [row for row in self.printers if row.get("id") != printer_id]

    async def list_categories(self) -> List[Dict[str, Any]]:
        self.calls.append("list_categories")
        return [dict(row) for row in sorted(self.categories, key=lambda row: row.get("name") or "")]

    async def update_category_printer(self, category_id: str, printer_id: Optional[str]) -> None:
        self.calls.append("update_category_printer")
        for row in self.categories:
            if row.get("id") == category_id:
                row["printer_id"] = printer_id
                return
        raise StoreError(f"Category {category_id} not found")

    async def fetch_business_settings(self) -> Optional[Dict[str, Any]]:
        self.calls.append("fetch_business_settings")
        return dict(self.settings) if self.settings else None

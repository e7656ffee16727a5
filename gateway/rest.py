"""
REST Warehouse Gateway — remote warehouse backend over HTTP.

Endpoints are named keys from settings (gateway.endpoints) with {param}
placeholders; a missing key falls back to the default path below.
Every httpx failure is mapped onto the gateway error taxonomy:

    404                       → NotFoundError / ItemNotFoundError
    other HTTP status / I/O   → GatewayUnavailableError
    non-JSON / malformed body → GatewayUnavailableError

Only connection establishment is retried (the request never reached the
server); a request that was sent is never re-sent.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import GatewayConfig
from core.errors import GatewayUnavailableError, ItemNotFoundError, NotFoundError
from gateway.base import WarehouseGateway
from models.schemas import (
    ItemStatus, Order, OrderItem, OrderStatus, PickingSession, User, WarehouseMetrics,
)

logger = structlog.get_logger()

DEFAULT_ENDPOINTS: dict[str, str] = {
    "get_order": "/orders/{order_id}",
    "get_orders": "/orders",
    "get_order_items": "/orders/{order_id}/items",
    "update_item": "/order-items/{item_id}",
    "update_order": "/orders/{order_id}",
    "start_session": "/picking-sessions",
    "complete_session": "/picking-sessions/{session_id}/complete",
    "get_metrics": "/metrics",
    "get_current_user": "/users/me",
}


class RESTWarehouseGateway(WarehouseGateway):
    """
    REST API warehouse gateway.
    Calls configured endpoints to fetch/update order and session data.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or GatewayConfig(backend="rest")
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            headers = {}
            if self.config.auth_type == "bearer":
                token = self.config.auth_credentials.get("token", "")
                headers["Authorization"] = f"Bearer {token}"
            elif self.config.auth_type == "api_key":
                key_name = self.config.auth_credentials.get("header_name", "X-API-Key")
                headers[key_name] = self.config.auth_credentials.get("api_key", "")

            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=self.config.timeout_s,
                transport=self._transport,
            )
        return self.client

    def _url(self, endpoint: str, path_params: dict[str, Any]) -> str:
        url = self.config.endpoints.get(endpoint) or DEFAULT_ENDPOINTS[endpoint]
        for k, v in path_params.items():
            url = url.replace(f"{{{k}}}", str(v))
        return url

    async def _request(
        self,
        method: str,
        endpoint: str,
        path_params: Optional[dict[str, Any]] = None,
        not_found: Optional[NotFoundError] = None,
        **kwargs,
    ) -> Any:
        client = await self._get_client()
        url = self._url(endpoint, path_params or {})
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(1 + max(self.config.connect_retries, 0)),
                wait=wait_exponential(multiplier=0.5, max=5),
                retry=retry_if_exception_type(httpx.ConnectError),
                reraise=True,
            ):
                with attempt:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404 and not_found is not None:
                raise not_found from e
            logger.warning("gateway_http_error", endpoint=endpoint,
                           status=e.response.status_code)
            raise GatewayUnavailableError(
                f"{endpoint} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("gateway_transport_error", endpoint=endpoint, error=str(e))
            raise GatewayUnavailableError(f"{endpoint} failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.warning("gateway_bad_payload", endpoint=endpoint, error=str(e))
            raise GatewayUnavailableError(f"{endpoint} returned a non-JSON body") from e
        if isinstance(result, dict) and "data" in result:
            return result["data"]
        return result

    @staticmethod
    def _build(endpoint: str, model: type, data: Any, many: bool = False) -> Any:
        """Construct response models; a malformed record is a gateway failure."""
        try:
            if many:
                return [model(**record) for record in data]
            return model(**data)
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("gateway_bad_payload", endpoint=endpoint, error=str(e))
            raise GatewayUnavailableError(f"{endpoint} returned malformed {model.__name__} data") from e

    # ── Orders ────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Order:
        data = await self._request(
            "GET", "get_order",
            path_params={"order_id": order_id},
            not_found=NotFoundError("order", order_id),
        )
        return self._build("get_order", Order, data)

    async def get_orders(self, warehouse_id: str, status: Optional[OrderStatus] = None) -> list[Order]:
        params = {"warehouse_id": warehouse_id}
        if status is not None:
            params["status"] = OrderStatus(status).value
        data = await self._request("GET", "get_orders", params=params)
        return self._build("get_orders", Order, data, many=True)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        data = await self._request(
            "PATCH", "update_order",
            path_params={"order_id": order_id},
            not_found=NotFoundError("order", order_id),
            json={"status": OrderStatus(status).value},
        )
        return self._build("update_order", Order, data)

    # ── Order items ───────────────────────────────────────

    async def get_order_items(self, order_id: str) -> list[OrderItem]:
        data = await self._request(
            "GET", "get_order_items",
            path_params={"order_id": order_id},
            not_found=NotFoundError("order", order_id),
        )
        return self._build("get_order_items", OrderItem, data, many=True)

    async def update_item(self, item_id: str, status: ItemStatus, quantity_picked: int) -> OrderItem:
        data = await self._request(
            "PATCH", "update_item",
            path_params={"item_id": item_id},
            not_found=ItemNotFoundError(item_id),
            json={"status": ItemStatus(status).value, "quantity_picked": quantity_picked},
        )
        return self._build("update_item", OrderItem, data)

    # ── Sessions ──────────────────────────────────────────

    async def start_session(self, worker_id: str, order_id: str) -> PickingSession:
        data = await self._request(
            "POST", "start_session",
            not_found=NotFoundError("order", order_id),
            json={"worker_id": worker_id, "order_id": order_id},
        )
        return self._build("start_session", PickingSession, data)

    async def complete_session(self, session_id: str, picked_items: int) -> PickingSession:
        data = await self._request(
            "POST", "complete_session",
            path_params={"session_id": session_id},
            not_found=NotFoundError("session", session_id),
            json={"picked_items": picked_items},
        )
        return self._build("complete_session", PickingSession, data)

    # ── Reporting ─────────────────────────────────────────

    async def get_warehouse_metrics(self, warehouse_id: str) -> WarehouseMetrics:
        data = await self._request("GET", "get_metrics", params={"warehouse_id": warehouse_id})
        return self._build("get_metrics", WarehouseMetrics, data)

    async def get_current_user(self) -> User:
        data = await self._request("GET", "get_current_user")
        return self._build("get_current_user", User, data)

    async def close(self):
        if self.client:
            await self.client.aclose()

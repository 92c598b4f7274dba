"""
Order Gateway - Repository for order records created by the payment webhook.

The core only reads orders and conditionally writes their status.
"""
import logging
from typing import Optional

from ..models import Order, OrderStatus
from ..protocols import IOrderGateway
from .api_client import HTTPAPIClient

logger = logging.getLogger(__name__)


class HTTPOrderGateway(IOrderGateway):
    """
    Order gateway backed by the orders REST API.

        GET   /orders?session_id=<id>   -> order object, [order], or 404
        PATCH /orders/<id>              {"status": "..."}
    """

    def __init__(self, api_client: HTTPAPIClient):
        self._api = api_client

    async def get_order(self, session_id: str) -> Optional[Order]:
        response = await self._api.get(
            "/orders", params={"session_id": session_id}, allow_404=True
        )
        if response is None:
            return None

        payload = response.json()
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not payload:
            return None

        order = Order.from_dict(payload)
        logger.debug("[orders] Found order %s for session %s", order.id, session_id)
        return order

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        await self._api.patch(f"/orders/{order_id}", json={"status": status.value})
        logger.info("[orders] Order %s -> %s", order_id, status.value)

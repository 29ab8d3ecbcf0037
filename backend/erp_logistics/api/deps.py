from fastapi import Request

from erp_logistics.core.config import settings
from erp_logistics.core.db import SessionLocal
from erp_logistics.core.logging import user_code_ctx_var
from erp_logistics.services.delivery_orders import DeliveryOrderService

MAX_USER_CODE_LENGTH = 64

_service: DeliveryOrderService | None = None


def get_actor(request: Request) -> str:
    """Caller identity from ``X-User-Code``; authentication happens upstream."""

    user_code = (request.headers.get("X-User-Code") or "").strip()[:MAX_USER_CODE_LENGTH]
    user_code = user_code or settings.SYSTEM_ACTOR
    request.state.user_code = user_code
    user_code_ctx_var.set(user_code)
    return user_code


def get_delivery_service() -> DeliveryOrderService:
    global _service
    if _service is None:
        _service = DeliveryOrderService(SessionLocal)
    return _service

"""Delivery order API endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from erp_logistics.api.deps import get_actor, get_delivery_service
from erp_logistics.api.errors import raise_http
from erp_logistics.core.config import settings
from erp_logistics.core.errors import DeliveryOrderError
from erp_logistics.core.idempotency import optional_idempotency_key
from erp_logistics.schemas.delivery_order import (
    DeliveryOrderCreate,
    DeliveryOrderListOut,
    DeliveryOrderListQuery,
    DeliveryOrderOut,
    DeliveryOrderPatch,
    VoidPayload,
)
from erp_logistics.services.delivery_orders import DeliveryOrderService

router = APIRouter(prefix="/delivery-orders", tags=["delivery-orders"])


@router.get("", response_model=DeliveryOrderListOut)
async def list_delivery_orders(
    status_filter: str = Query(default="all", alias="status"),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderListOut:
    query = DeliveryOrderListQuery(
        status=status_filter, search_text=search, page=page, page_size=page_size
    )
    return await service.list_delivery_orders(query)


@router.get("/{do_id}", response_model=DeliveryOrderOut)
async def get_delivery_order(
    do_id: str,
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.get_delivery_order(do_id)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.post("", response_model=DeliveryOrderOut, status_code=status.HTTP_201_CREATED)
async def create_delivery_order(
    payload: DeliveryOrderCreate,
    actor: str = Depends(get_actor),
    idempotency_key: Optional[str] = Depends(optional_idempotency_key),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.create_delivery_order(payload, actor, idempotency_key)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.patch("/{do_id}", response_model=DeliveryOrderOut)
async def update_delivery_order(
    do_id: str,
    patch: DeliveryOrderPatch,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.update_delivery_order(do_id, patch, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.delete("/{do_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delivery_order(
    do_id: str,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> Response:
    try:
        await service.delete_delivery_order(do_id, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{do_id}/release", response_model=DeliveryOrderOut)
async def release_delivery_order(
    do_id: str,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.release_delivery_order(do_id, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.post("/{do_id}/void", response_model=DeliveryOrderOut)
async def void_delivery_order(
    do_id: str,
    payload: VoidPayload,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.void_delivery_order(do_id, payload.reason, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.post("/{do_id}/invoice", response_model=DeliveryOrderOut)
async def mark_delivery_order_invoiced(
    do_id: str,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.mark_delivery_order_invoiced(do_id, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)


@router.post("/{do_id}/close", response_model=DeliveryOrderOut)
async def mark_delivery_order_closed(
    do_id: str,
    actor: str = Depends(get_actor),
    service: DeliveryOrderService = Depends(get_delivery_service),
) -> DeliveryOrderOut:
    try:
        return await service.mark_delivery_order_closed(do_id, actor)
    except DeliveryOrderError as exc:
        raise_http(exc)

from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from apps.api.api.schemas import OrderModel, OrderPageModel, OrderWithTicketModel, to_http_exception
from apps.api.dependencies.services import (
    BuyerUser,
    CheckoutServiceDep,
    CreatorUser,
    OrchestratorDep,
    OrderServiceDep,
    ParticipantUser,
    SupportUser,
)
from apps.api.services.checkout import CartItem
from apps.api.services.errors import SupportDeskError
from apps.api.services.models import OrderInput, OrderStatus

router = APIRouter(tags=["orders"])


class OrderCreateRequest(BaseModel):
    package_id: int
    brand_id: int
    creator_id: int | None = None
    quantity: int = Field(default=1, ge=1)
    total_amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class CartItemRequest(BaseModel):
    package_id: int
    quantity: int = Field(default=1, ge=1)


class CheckoutRequest(BaseModel):
    brand_user_id: int
    items: list[CartItemRequest] = Field(min_length=1)


class OrderStatusChangeRequest(BaseModel):
    status: OrderStatus


class OrderAcceptRequest(BaseModel):
    creator_id: int


class OrderRejectRequest(BaseModel):
    creator_id: int
    message: str = Field(min_length=1)


@router.post(
    "/orders",
    response_model=OrderWithTicketModel,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order together with its support ticket",
)
async def create_order(
    payload: OrderCreateRequest,
    orchestrator: OrchestratorDep,
    user: BuyerUser,
) -> OrderWithTicketModel:
    order_input = OrderInput(
        package_id=payload.package_id,
        brand_id=payload.brand_id,
        creator_id=payload.creator_id,
        quantity=payload.quantity,
        total_amount=payload.total_amount,
        currency=payload.currency,
    )
    try:
        result = await orchestrator.create_order_with_ticket(order_input, actor=user.username)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return OrderWithTicketModel.from_entity(result)


@router.post(
    "/orders/checkout",
    response_model=list[OrderWithTicketModel],
    status_code=status.HTTP_201_CREATED,
    summary="Check out a cart; every item becomes an order with a ticket",
)
async def checkout(
    payload: CheckoutRequest,
    service: CheckoutServiceDep,
    _: BuyerUser,
) -> list[OrderWithTicketModel]:
    items = [CartItem(package_id=item.package_id, quantity=item.quantity) for item in payload.items]
    try:
        results = await service.checkout(payload.brand_user_id, items)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [OrderWithTicketModel.from_entity(result) for result in results]


@router.get("/orders", response_model=OrderPageModel)
async def list_orders(
    service: OrderServiceDep,
    _: SupportUser,
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> OrderPageModel:
    orders, total = await service.list_orders(status=status_filter, limit=limit, offset=offset)
    return OrderPageModel(
        items=[OrderModel.from_entity(order) for order in orders], total=total, limit=limit, offset=offset
    )


@router.get("/orders/{order_id}", response_model=OrderWithTicketModel)
async def get_order(order_id: int, service: OrderServiceDep, _: ParticipantUser) -> OrderWithTicketModel:
    try:
        result = await service.get_order(order_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return OrderWithTicketModel.from_entity(result)


@router.put("/orders/{order_id}/status", response_model=OrderModel)
async def change_order_status(
    order_id: int,
    payload: OrderStatusChangeRequest,
    service: OrderServiceDep,
    user: SupportUser,
) -> OrderModel:
    try:
        order = await service.update_status(order_id, payload.status, actor=user.username)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return OrderModel.from_entity(order)


@router.put("/orders/{order_id}/accept", response_model=OrderModel)
async def accept_order(
    order_id: int,
    payload: OrderAcceptRequest,
    service: OrderServiceDep,
    user: CreatorUser,
) -> OrderModel:
    try:
        order = await service.accept(order_id, creator_id=payload.creator_id, actor=user.username)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return OrderModel.from_entity(order)


@router.put("/orders/{order_id}/reject", response_model=OrderModel)
async def reject_order(
    order_id: int,
    payload: OrderRejectRequest,
    service: OrderServiceDep,
    user: CreatorUser,
) -> OrderModel:
    try:
        order = await service.reject(
            order_id, creator_id=payload.creator_id, message=payload.message, actor=user.username
        )
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return OrderModel.from_entity(order)


@router.get("/brands/{brand_id}/orders", response_model=list[OrderModel])
async def list_brand_orders(
    brand_id: int,
    service: OrderServiceDep,
    _: ParticipantUser,
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
) -> list[OrderModel]:
    try:
        orders = await service.list_brand_orders(brand_id, status=status_filter)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [OrderModel.from_entity(order) for order in orders]


@router.get("/creators/{creator_id}/orders", response_model=list[OrderModel])
async def list_creator_orders(
    creator_id: int,
    service: OrderServiceDep,
    _: ParticipantUser,
    status_filter: Annotated[OrderStatus | None, Query(alias="status")] = None,
) -> list[OrderModel]:
    try:
        orders = await service.list_creator_orders(creator_id, status=status_filter)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [OrderModel.from_entity(order) for order in orders]

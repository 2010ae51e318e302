"""Digital product orders and downloads.

- POST  /v1/digital-orders/checkout                    order the cart
- GET   /v1/digital-orders/mine                        the caller's orders
- GET   /v1/digital-orders/{id}                        owner or admin
- GET   /v1/digital-orders                             admin: every order
- PATCH /v1/digital-orders/{id}/status                 admin: payment outcome
- GET   /v1/digital-orders/{id}/downloads              links for a paid order
- POST  /v1/digital-orders/downloads/{token}/consume   meter one download
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_download_broker, require_role, require_user
from app.api.orders import StatusIn
from app.models.order import (
    BuyerInfo,
    DigitalOrder,
    DownloadToken,
    PaymentMethod,
    PaymentStatus,
)
from app.models.principal import Principal
from app.services.download_broker import DownloadBroker, DownloadLink
from app.services.work import work_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/digital-orders", tags=["digital-orders"])


class BuyerInfoIn(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)


class CheckoutIn(BaseModel):
    payment_method: PaymentMethod | None = None
    transaction_id: str | None = Field(default=None, max_length=255)
    buyer_info: BuyerInfoIn | None = None


class LineItemOut(BaseModel):
    product_id: UUID
    unit_price: int
    title_snapshot: str


class DownloadTokenOut(BaseModel):
    product_id: UUID
    token: str
    expires_at: int
    max_downloads: int
    downloads_used: int
    downloads_remaining: int

    @staticmethod
    def from_token(token: DownloadToken) -> DownloadTokenOut:
        return DownloadTokenOut(
            product_id=token.product_id,
            token=token.token,
            expires_at=token.expires_at,
            max_downloads=token.max_downloads,
            downloads_used=token.downloads_used,
            downloads_remaining=token.downloads_remaining,
        )


class DigitalOrderOut(BaseModel):
    id: UUID
    buyer_id: UUID
    line_items: list[LineItemOut]
    total_amount: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: str
    buyer_info: BuyerInfoIn | None
    download_tokens: list[DownloadTokenOut]
    created_at: int

    @staticmethod
    def from_order(order: DigitalOrder) -> DigitalOrderOut:
        info = order.buyer_info
        return DigitalOrderOut(
            id=order.id,
            buyer_id=order.buyer_id,
            line_items=[
                LineItemOut(
                    product_id=i.product_id,
                    unit_price=i.unit_price,
                    title_snapshot=i.title_snapshot,
                )
                for i in order.line_items
            ],
            total_amount=order.total_amount,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            transaction_id=order.transaction_id,
            buyer_info=(
                BuyerInfoIn(name=info.name, email=info.email, phone=info.phone)
                if info
                else None
            ),
            download_tokens=[DownloadTokenOut.from_token(t) for t in order.download_tokens],
            created_at=order.created_at,
        )


class FileLinkOut(BaseModel):
    name: str
    url: str
    url_expires_at: int | None = None


class DownloadLinkOut(BaseModel):
    product_id: UUID
    title: str
    files: list[FileLinkOut]
    token: str | None
    expires_at: int | None
    downloads_remaining: int

    @staticmethod
    def from_link(link: DownloadLink) -> DownloadLinkOut:
        return DownloadLinkOut(
            product_id=link.product_id,
            title=link.title,
            files=[
                FileLinkOut(name=f.name, url=f.url, url_expires_at=f.url_expires_at)
                for f in link.files
            ],
            token=link.token,
            expires_at=link.expires_at,
            downloads_remaining=link.downloads_remaining,
        )


@router.post(
    "/checkout", response_model=DigitalOrderOut, status_code=status.HTTP_201_CREATED
)
async def checkout(
    body: CheckoutIn,
    principal: Annotated[Principal, Depends(require_role("student"))],
) -> DigitalOrderOut:
    buyer_info = None
    if body.buyer_info is not None:
        buyer_info = BuyerInfo(
            name=body.buyer_info.name,
            email=body.buyer_info.email,
            phone=body.buyer_info.phone,
        )
    async with work_scope() as work:
        order = await work.ledger().record_cart_order(
            principal.id,
            payment_method=body.payment_method,
            transaction_id=body.transaction_id,
            buyer_info=buyer_info,
        )
    return DigitalOrderOut.from_order(order)


@router.get("/mine", response_model=list[DigitalOrderOut])
async def my_digital_orders(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[DigitalOrderOut]:
    async with work_scope() as work:
        orders = await work.ledger().list_digital_orders_for_buyer(principal.id)
    return [DigitalOrderOut.from_order(o) for o in orders]


@router.get("", response_model=list[DigitalOrderOut])
async def list_digital_orders(
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> list[DigitalOrderOut]:
    async with work_scope() as work:
        orders = await work.ledger().list_all_digital_orders()
    return [DigitalOrderOut.from_order(o) for o in orders]


@router.get("/{order_id}", response_model=DigitalOrderOut)
async def get_digital_order(
    order_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> DigitalOrderOut:
    async with work_scope() as work:
        order = await work.ledger().get_digital_order(order_id, principal)
    return DigitalOrderOut.from_order(order)


@router.patch("/{order_id}/status", response_model=DigitalOrderOut)
async def update_digital_order_status(
    order_id: UUID,
    body: StatusIn,
    admin: Annotated[Principal, Depends(require_role("admin"))],
) -> DigitalOrderOut:
    async with work_scope() as work:
        order = await work.ledger().set_digital_order_status(
            order_id, body.payment_status, body.transaction_id
        )
    logger.info(
        "Admin=%s set digital order=%s to %s",
        admin.user_id,
        order_id,
        body.payment_status,
        extra={"order_id": str(order_id)},
    )
    return DigitalOrderOut.from_order(order)


@router.get("/{order_id}/downloads", response_model=list[DownloadLinkOut])
async def download_links(
    order_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    broker: Annotated[DownloadBroker, Depends(get_download_broker)],
) -> list[DownloadLinkOut]:
    links = await broker.resolve_download(order_id, principal)
    return [DownloadLinkOut.from_link(link) for link in links]


@router.post("/downloads/{token}/consume", response_model=DownloadTokenOut)
async def consume_download(
    token: str,
    principal: Annotated[Principal, Depends(require_user)],
    broker: Annotated[DownloadBroker, Depends(get_download_broker)],
) -> DownloadTokenOut:
    consumed = await broker.record_download(token, principal)
    return DownloadTokenOut.from_token(consumed)

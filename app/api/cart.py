from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.models.product import Cart
from app.services.work import work_scope

router = APIRouter(prefix="/v1/cart", tags=["cart"])


class CartItemIn(BaseModel):
    product_id: UUID


class CartItemOut(BaseModel):
    product_id: UUID
    price: int


class CartOut(BaseModel):
    items: list[CartItemOut]
    subtotal: int

    @staticmethod
    def from_cart(cart: Cart) -> CartOut:
        return CartOut(
            items=[CartItemOut(product_id=i.product_id, price=i.price) for i in cart.items],
            subtotal=cart.subtotal,
        )


@router.get("", response_model=CartOut)
async def get_cart(
    principal: Annotated[Principal, Depends(require_user)],
) -> CartOut:
    async with work_scope() as work:
        cart = await work.carts().get_cart(principal.id)
    return CartOut.from_cart(cart)


@router.post("/items", response_model=CartOut)
async def add_to_cart(
    body: CartItemIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> CartOut:
    async with work_scope() as work:
        cart = await work.carts().add_item(principal.id, body.product_id)
    return CartOut.from_cart(cart)


@router.delete("/items/{product_id}", response_model=CartOut)
async def remove_from_cart(
    product_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> CartOut:
    async with work_scope() as work:
        cart = await work.carts().remove_item(principal.id, product_id)
    return CartOut.from_cart(cart)

from __future__ import annotations

import logging
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.errors import NotFound
from app.models.product import Cart, CartItem
from app.repos.registry import Repos

logger = logging.getLogger(__name__)


class CartService:
    """The buyer's cart.  Prices are captured when an item is added."""

    def __init__(self, repos: Repos, *, clock: Clock = utc_now) -> None:
        self._repos = repos
        self._clock = clock

    async def get_cart(self, user_id: UUID) -> Cart:
        return await self._repos.carts.get(user_id)

    async def add_item(self, user_id: UUID, product_id: UUID) -> Cart:
        product = await self._repos.catalog.get_product(product_id)
        if product is None or not product.is_published:
            raise NotFound("product not found")
        cart = await self._repos.carts.add_item(
            user_id,
            CartItem(product_id=product_id, price=product.effective_price),
            self._clock(),
        )
        logger.info("Cart of user=%s now has %d item(s)", user_id, len(cart.items))
        return cart

    async def remove_item(self, user_id: UUID, product_id: UUID) -> Cart:
        return await self._repos.carts.remove_item(user_id, product_id)

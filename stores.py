"""
Client-side state that mirrors the server: the current cart and the signed-in user.
"""
import logging
from typing import List, Optional

import httpx

from client import ApiClient, ApiError
from schemas import CartItem, UserOut

logger = logging.getLogger(__name__)


class CartStore:
    def __init__(self, client: ApiClient):
        self.client = client
        self.items: List[CartItem] = []
        self.total_items = 0
        self.total_price = 0.0
        self.is_loading = False

    def _apply(self, cart) -> None:
        self.items = list(cart.items)
        self.total_items = cart.total_items
        self.total_price = cart.total_price

    def _recompute(self) -> None:
        self.total_items = sum(it.quantity for it in self.items)
        self.total_price = round(sum(it.price * it.quantity for it in self.items), 2)

    def fetch(self) -> None:
        self.is_loading = True
        try:
            self._apply(self.client.get_cart())
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Failed to fetch cart: %s", exc)
        finally:
            self.is_loading = False

    def add(self, product_id: str, quantity: int = 1) -> None:
        self.is_loading = True
        try:
            self._apply(self.client.add_to_cart(product_id, quantity))
        finally:
            self.is_loading = False

    def update(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            return self.remove(item_id)
        self.is_loading = True
        try:
            self._apply(self.client.update_cart_item(item_id, quantity))
        finally:
            self.is_loading = False

    def remove(self, item_id: str) -> None:
        self.is_loading = True
        try:
            self.client.remove_from_cart(item_id)
            self.items = [it for it in self.items if it.id != item_id]
            self._recompute()
        finally:
            self.is_loading = False

    def clear(self) -> None:
        self.items = []
        self._recompute()


class AuthStore:
    def __init__(self, client: ApiClient, cart: Optional[CartStore] = None):
        self.client = client
        self.cart = cart
        self.user: Optional[UserOut] = None
        self.is_authenticated = False
        self.is_loading = False

    def _signed_in(self, user: UserOut) -> None:
        self.user = user
        self.is_authenticated = True
        if self.cart is not None:
            self.cart.fetch()

    def login(self, email: str, password: str) -> UserOut:
        self.is_loading = True
        try:
            user = self.client.login(email, password)
        finally:
            self.is_loading = False
        self._signed_in(user)
        return user

    def register(self, email: str, password: str, first_name: str, last_name: str) -> UserOut:
        self.is_loading = True
        try:
            user = self.client.register(email, password, first_name, last_name)
        finally:
            self.is_loading = False
        self._signed_in(user)
        return user

    def logout(self) -> None:
        self.client.clear_tokens()
        self.user = None
        self.is_authenticated = False
        if self.cart is not None:
            self.cart.clear()

    def check_auth(self) -> bool:
        if not self.client.access_token:
            self.user = None
            self.is_authenticated = False
            return False
        try:
            self._signed_in(self.client.get_profile())
        except ApiError:
            self.client.clear_tokens()
            self.user = None
            self.is_authenticated = False
        return self.is_authenticated

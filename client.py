"""
Typed client for the E‑commerce API.

Tokens live in the client's cookie jar (`access_token`, `refresh_token`).
A request that comes back 401 triggers one refresh through /auth/refresh and
is retried once with the new access token.
"""
import logging
import os
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import ValidationError

from schemas import Address, Cart, Category, OrderOut, ProductOut, ProductPage, ReviewOut, UserOut

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_URL", "http://localhost:8000")
ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

T = TypeVar("T")


class ApiError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"API Error: {status_code} {detail}")
        self.status_code = status_code
        self.detail = detail


class ApiClient:
    def __init__(self, base_url: str = API_BASE_URL, http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.http = http if http is not None else httpx.Client(base_url=base_url, timeout=timeout)

    # Token handling

    @property
    def access_token(self) -> Optional[str]:
        return self.http.cookies.get(ACCESS_COOKIE)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.http.cookies.get(REFRESH_COOKIE)

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.http.cookies.set(ACCESS_COOKIE, access_token)
        if refresh_token:
            self.http.cookies.set(REFRESH_COOKIE, refresh_token)

    def clear_tokens(self) -> None:
        for name in (ACCESS_COOKIE, REFRESH_COOKIE):
            self.http.cookies.delete(name)

    def _refresh(self) -> bool:
        token = self.refresh_token
        if not token:
            return False
        logger.info("Access token rejected, refreshing")
        response = self.http.post("/auth/refresh", json={"refresh_token": token})
        if response.status_code != 200:
            logger.warning("Token refresh failed with %s", response.status_code)
            self.clear_tokens()
            return False
        data = response.json()
        self.set_tokens(data["access_token"], data.get("refresh_token"))
        return True

    # Raw requests

    def _send(self, method: str, path: str, params: Optional[Dict[str, Any]], json: Any) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return self.http.request(method, path, params=params, json=json, headers=headers)

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, json: Any = None) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        response = self._send(method, path, params, json)
        if response.status_code == 401 and not path.startswith("/auth/") and self._refresh():
            response = self._send(method, path, params, json)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            detail = body.get("detail", body) if isinstance(body, dict) else body
            raise ApiError(response.status_code, detail)
        return response.json()

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    # Auth

    def _start_session(self, data: Dict[str, Any]) -> UserOut:
        self.set_tokens(data["access_token"], data["refresh_token"])
        return UserOut(**data["user"])

    def login(self, email: str, password: str) -> UserOut:
        return self._start_session(self.post("/auth/login", {"email": email, "password": password}))

    def register(self, email: str, password: str, first_name: str, last_name: str) -> UserOut:
        return self._start_session(self.post("/auth/register", {
            "email": email, "password": password, "first_name": first_name, "last_name": last_name,
        }))

    def get_profile(self) -> UserOut:
        return UserOut(**self.get("/users/profile"))

    # Catalog

    def get_products(self, page: Optional[int] = None, limit: Optional[int] = None, category: Optional[str] = None,
                     categories: Optional[List[str]] = None, search: Optional[str] = None,
                     min_price: Optional[float] = None, max_price: Optional[float] = None) -> ProductPage:
        return ProductPage(**self.get("/products", {
            "page": page,
            "limit": limit,
            "category": category,
            "categories": ",".join(categories) if categories else None,
            "search": search,
            "min_price": min_price,
            "max_price": max_price,
        }))

    def get_featured_products(self) -> List[ProductOut]:
        return self.get_products(limit=4).data

    def get_product(self, product_id: str) -> ProductOut:
        return ProductOut(**self.get(f"/products/{product_id}"))

    def get_related_products(self, product_id: str) -> List[ProductOut]:
        return [ProductOut(**p) for p in self.get(f"/products/{product_id}/related")]

    def get_categories(self) -> List[Category]:
        return [Category(**c) for c in self.get("/products/categories")]

    def get_reviews(self, product_id: str) -> List[ReviewOut]:
        return [ReviewOut(**r) for r in self.get(f"/products/{product_id}/reviews")]

    def add_review(self, product_id: str, rating: int, comment: Optional[str] = None) -> ReviewOut:
        return ReviewOut(**self.post(f"/products/{product_id}/reviews", {"rating": rating, "comment": comment}))

    # Cart

    def get_cart(self) -> Cart:
        return Cart(**self.get("/cart"))

    def add_to_cart(self, product_id: str, quantity: int = 1) -> Cart:
        return Cart(**self.post("/cart", {"product_id": product_id, "quantity": quantity}))

    def update_cart_item(self, item_id: str, quantity: int) -> Cart:
        return Cart(**self.put(f"/cart/{item_id}", {"quantity": quantity}))

    def remove_from_cart(self, item_id: str) -> Cart:
        return Cart(**self.delete(f"/cart/{item_id}"))

    def clear_cart(self) -> Cart:
        return Cart(**self.delete("/cart"))

    # Orders

    def create_order(self, shipping_address: Address, billing_address: Optional[Address] = None) -> OrderOut:
        return OrderOut(**self.post("/orders", {
            "shipping_address": shipping_address.model_dump(),
            "billing_address": billing_address.model_dump() if billing_address else None,
        }))

    def get_orders(self) -> List[OrderOut]:
        return [OrderOut(**o) for o in self.get("/orders")]

    def get_order(self, order_id: str) -> OrderOut:
        return OrderOut(**self.get(f"/orders/{order_id}"))


def guarded(call: Callable[[], T], fallback: T) -> T:
    """Run a client call for rendering; on failure log it and return `fallback`."""
    try:
        return call()
    except (ApiError, httpx.HTTPError, ValidationError) as exc:
        logger.error("API call failed: %s", exc)
        return fallback

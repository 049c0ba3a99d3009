import logging
import math
import re
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from repositories import Repository
from schemas import (
    Address,
    Cart,
    CartItem,
    Category,
    Order,
    OrderItem,
    OrderOut,
    OrderStatus,
    Product,
    ProductOut,
    ProductPage,
    Review,
    ReviewOut,
    User,
    UserOut,
    UserRole,
)
from security import ACCESS, REFRESH, JwtStrategy, hash_password, verify_password

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
NEWEST_FIRST = [("created_at", -1)]

T = TypeVar("T")


class ProductService:
    def __init__(self, repo: Repository):
        self.repo = repo

    def find_all(self) -> List[ProductOut]:
        return [ProductOut(**d) for d in self.repo.find()]

    def find_one(self, product_id: str) -> Optional[ProductOut]:
        doc = self.repo.get(product_id)
        return ProductOut(**doc) if doc else None

    def create(self, product: Product, product_id: Optional[str] = None) -> ProductOut:
        doc = product.model_dump(mode="json")
        if product_id:
            doc["id"] = product_id
        created = ProductOut(**self.repo.insert(doc))
        logger.info("Created product %s (%s)", created.id, created.name)
        return created

    def remove(self, product_id: str) -> bool:
        removed = self.repo.delete(product_id)
        if removed:
            logger.info("Removed product %s", product_id)
        return removed

    def search(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE, category: Optional[str] = None,
               categories: Optional[List[str]] = None, min_price: Optional[float] = None,
               max_price: Optional[float] = None, search: Optional[str] = None) -> ProductPage:
        page = page if page and page > 0 else 1
        limit = limit if limit and limit > 0 else DEFAULT_PAGE_SIZE
        filters: Dict[str, Any] = {"is_active": True}
        wanted = [c for c in (categories or []) if c] or ([category] if category else [])
        if wanted:
            filters["category"] = {"$in": wanted}
        price_cond: Dict[str, float] = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        if price_cond:
            filters["price"] = price_cond
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            filters["$or"] = [{"name": pattern}, {"description": pattern}]

        total = self.repo.count(filters)
        docs = self.repo.query(filters, sort=NEWEST_FIRST, skip=(page - 1) * limit, limit=limit)
        return ProductPage(
            data=[ProductOut(**d) for d in docs],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def categories(self) -> List[Category]:
        counts: Dict[str, int] = {}
        for doc in self.repo.find({"is_active": True}):
            counts[doc["category"]] = counts.get(doc["category"], 0) + 1
        return [
            Category(
                id=f"cat-{index}",
                name=name,
                description=f"Browse products in {name} category",
                product_count=counts[name],
            )
            for index, name in enumerate(sorted(counts), start=1)
        ]

    def find_by_category(self, category: str) -> List[ProductOut]:
        docs = self.repo.query({"category": category, "is_active": True}, sort=NEWEST_FIRST)
        return [ProductOut(**d) for d in docs]

    def find_related(self, product_id: str, limit: int = 4) -> List[ProductOut]:
        product = self.find_one(product_id)
        if product is None:
            return []
        docs = self.repo.query(
            {"category": product.category, "is_active": True, "id": {"$ne": product_id}},
            sort=[("rating", -1)],
            limit=limit,
        )
        return [ProductOut(**d) for d in docs]

    def set_review_stats(self, product_id: str, rating: float, review_count: int) -> None:
        self.repo.update(product_id, {"rating": rating, "review_count": review_count})


class CartService:
    """Per-user carts. Every mutation is a read-modify-write under one lock."""

    def __init__(self, repo: Repository):
        self.repo = repo
        self._lock = threading.Lock()

    def _load(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.repo.find_one({"user_id": user_id})

    def _save(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        cart = self._load(user_id)
        if cart is None:
            self.repo.insert({"user_id": user_id, "items": items})
        else:
            self.repo.update(cart["id"], {"items": items})

    def get_items(self, user_id: str) -> List[CartItem]:
        cart = self._load(user_id)
        return [CartItem(**it) for it in (cart or {}).get("items", [])]

    def add_item(self, user_id: str, item: CartItem) -> CartItem:
        with self._lock:
            items = [it.model_dump() for it in self.get_items(user_id)]
            for existing in items:
                if existing["id"] == item.id:
                    existing["quantity"] += item.quantity
                    stored = existing
                    break
            else:
                stored = item.model_dump()
                items.append(stored)
            self._save(user_id, items)
        return CartItem(**stored)

    def update_quantity(self, user_id: str, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(user_id, item_id)
            return
        with self._lock:
            items = [it.model_dump() for it in self.get_items(user_id)]
            for existing in items:
                if existing["id"] == item_id:
                    existing["quantity"] = quantity
                    self._save(user_id, items)
                    break

    def remove_item(self, user_id: str, item_id: str) -> None:
        with self._lock:
            items = [it.model_dump() for it in self.get_items(user_id)]
            kept = [it for it in items if it["id"] != item_id]
            if len(kept) != len(items):
                self._save(user_id, kept)

    def clear_cart(self, user_id: str) -> None:
        with self._lock:
            if self._load(user_id) is not None:
                self._save(user_id, [])

    def checkout(self, user_id: str, place: Callable[[List[CartItem]], T]) -> T:
        """Hand the cart's items to `place` and empty the cart once it returns.

        The cart stays locked while `place` runs: concurrent adds wait and land
        in the emptied cart. If `place` raises, the cart is left as it was.
        """
        with self._lock:
            result = place(self.get_items(user_id))
            if self._load(user_id) is not None:
                self._save(user_id, [])
        return result

    def summary(self, user_id: str) -> Cart:
        items = self.get_items(user_id)
        return Cart(
            user_id=user_id,
            items=items,
            total_items=sum(it.quantity for it in items),
            total_price=round(sum(it.price * it.quantity for it in items), 2),
        )


class UserService:
    def __init__(self, repo: Repository, admin_emails: Optional[List[str]] = None):
        self.repo = repo
        self.admin_emails = {e.lower() for e in (admin_emails or [])}

    def create_user(self, email: str, hashed_password: str, first_name: str, last_name: str) -> UserOut:
        email = email.lower()
        if self.repo.find_one({"email": email}):
            raise ConflictError("User with this email already exists")
        role = UserRole.ADMIN if email in self.admin_emails else UserRole.USER
        user = User(email=email, password=hashed_password, first_name=first_name,
                    last_name=last_name, role=role)
        return UserOut(**self.repo.insert(user.model_dump(mode="json")))

    def find_with_password(self, email: str) -> Optional[Dict[str, Any]]:
        return self.repo.find_one({"email": email.lower()})

    def find_by_email(self, email: str) -> Optional[UserOut]:
        doc = self.find_with_password(email)
        return UserOut(**doc) if doc else None

    def find_by_id(self, user_id: str) -> Optional[UserOut]:
        doc = self.repo.get(user_id)
        return UserOut(**doc) if doc else None

    def find_all(self) -> List[UserOut]:
        return [UserOut(**d) for d in self.repo.find()]

    def update_profile(self, user_id: str, first_name: Optional[str] = None, last_name: Optional[str] = None,
                       email: Optional[str] = None) -> Optional[UserOut]:
        fields: Dict[str, Any] = {}
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name
        if email is not None:
            email = email.lower()
            owner = self.repo.find_one({"email": email})
            if owner and owner["id"] != user_id:
                raise ConflictError("User with this email already exists")
            fields["email"] = email
        if not fields:
            return self.find_by_id(user_id)
        doc = self.repo.update(user_id, fields)
        return UserOut(**doc) if doc else None


class AuthService:
    """Registration and login. Token signing and checking is left to the strategy."""

    def __init__(self, users: UserService, strategy: JwtStrategy):
        self.users = users
        self.strategy = strategy

    def _session(self, user: UserOut) -> Dict[str, Any]:
        return {"user": user, **self.strategy.issue_pair(user.id, user.email)}

    def register(self, email: str, password: str, first_name: str, last_name: str) -> Dict[str, Any]:
        user = self.users.create_user(email, hash_password(password), first_name, last_name)
        logger.info("Registered user %s", user.id)
        return self._session(user)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        doc = self.users.find_with_password(email)
        if not doc or not verify_password(password, doc.get("password", "")):
            logger.warning("Failed login for %s", email)
            raise AuthenticationError("Invalid credentials")
        user = UserOut(**doc)
        logger.info("User %s logged in", user.id)
        return self._session(user)

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        payload = self.strategy.verify(refresh_token, REFRESH)
        user = self.users.find_by_id(payload["sub"])
        if user is None:
            raise AuthenticationError("Invalid refresh token")
        return self._session(user)

    def current_user(self, access_token: str) -> UserOut:
        payload = self.strategy.verify(access_token, ACCESS)
        user = self.users.find_by_id(payload["sub"])
        if user is None:
            raise AuthenticationError("User not found")
        return user


class ReviewService:
    def __init__(self, repo: Repository, products: ProductService):
        self.repo = repo
        self.products = products

    def find_by_product(self, product_id: str) -> List[ReviewOut]:
        return [ReviewOut(**d) for d in self.repo.query({"product_id": product_id}, sort=NEWEST_FIRST)]

    def create(self, user_id: str, product_id: str, rating: int, comment: Optional[str] = None) -> ReviewOut:
        if self.products.find_one(product_id) is None:
            raise NotFoundError("Product not found")
        review = Review(user_id=user_id, product_id=product_id, rating=rating, comment=comment)
        if self.repo.find_one({"user_id": user_id, "product_id": product_id}):
            raise ConflictError("You have already reviewed this product")
        created = ReviewOut(**self.repo.insert(review.model_dump(mode="json")))
        ratings = [d["rating"] for d in self.repo.find({"product_id": product_id})]
        self.products.set_review_stats(product_id, round(sum(ratings) / len(ratings), 1), len(ratings))
        return created


class OrderService:
    def __init__(self, repo: Repository, carts: CartService, products: ProductService):
        self.repo = repo
        self.carts = carts
        self.products = products

    def create_from_cart(self, user_id: str, shipping_address: Address,
                         billing_address: Optional[Address] = None) -> OrderOut:
        def place(cart_items: List[CartItem]) -> OrderOut:
            items: List[OrderItem] = []
            for it in cart_items:
                product = self.products.find_one(it.id)
                if product is None or not product.is_active:
                    continue
                items.append(OrderItem(product_id=product.id, name=product.name,
                                       quantity=it.quantity, price=product.price))
            if not items:
                raise ValidationError("Cart is empty")
            order = Order(
                user_id=user_id,
                items=items,
                total_amount=round(sum(i.price * i.quantity for i in items), 2),
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
            )
            return OrderOut(**self.repo.insert(order.model_dump(mode="json")))

        created = self.carts.checkout(user_id, place)
        logger.info("Order %s placed by user %s, total %.2f", created.id, user_id, created.total_amount)
        return created

    def find_by_user(self, user_id: str) -> List[OrderOut]:
        return [OrderOut(**d) for d in self.repo.query({"user_id": user_id}, sort=NEWEST_FIRST)]

    def find_all(self) -> List[OrderOut]:
        return [OrderOut(**d) for d in self.repo.query(sort=NEWEST_FIRST)]

    def find_one(self, order_id: str, user_id: Optional[str] = None) -> Optional[OrderOut]:
        doc = self.repo.get(order_id)
        if doc is None or (user_id is not None and doc["user_id"] != user_id):
            return None
        return OrderOut(**doc)

    def update_status(self, order_id: str, status: OrderStatus) -> Optional[OrderOut]:
        doc = self.repo.update(order_id, {"status": status.value})
        if doc is None:
            return None
        logger.info("Order %s moved to %s", order_id, status.value)
        return OrderOut(**doc)

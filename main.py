import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from config import Settings, configure_logging
from database import connect
from errors import AuthenticationError, NotFoundError, PermissionDeniedError, StoreError
from repositories import Repositories
from schemas import (
    Address,
    Cart,
    CartItem,
    Category,
    OrderOut,
    OrderStatus,
    Product,
    ProductOut,
    ProductPage,
    ReviewOut,
    UserOut,
    UserRole,
)
from security import JwtStrategy
from services import AuthService, CartService, OrderService, ProductService, ReviewService, UserService

settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="E-commerce API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
security = HTTPBearer(auto_error=False)


# Wiring
@dataclass
class Services:
    settings: Settings
    users: UserService
    auth: AuthService
    products: ProductService
    carts: CartService
    reviews: ReviewService
    orders: OrderService
    database: Any = None


def build_services(settings: Settings, repositories: Repositories, database=None) -> Services:
    users = UserService(repositories.users, settings.admin_emails)
    products = ProductService(repositories.products)
    carts = CartService(repositories.carts)
    return Services(
        settings=settings,
        users=users,
        auth=AuthService(users, JwtStrategy(settings)),
        products=products,
        carts=carts,
        reviews=ReviewService(repositories.reviews, products),
        orders=OrderService(repositories.orders, carts, products),
        database=database,
    )


def wire(application: FastAPI, settings: Settings, repositories: Optional[Repositories] = None) -> Services:
    database = None
    if repositories is None:
        database = connect(settings.database_url, settings.database_name)
        repositories = Repositories.mongo(database) if database is not None else Repositories.in_memory()
    services = build_services(settings, repositories, database)
    application.state.services = services
    return services


wire(app, settings)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, duration_ms)
    return response


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                     services: Services = Depends(get_services)) -> UserOut:
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return services.auth.current_user(credentials.credentials)


def require_admin(user: UserOut = Depends(get_current_user)) -> UserOut:
    if user.role != UserRole.ADMIN:
        raise PermissionDeniedError("Admin only")
    return user


# Schemas (request/response)
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserOut


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None


class ProductIn(Product):
    id: Optional[str] = None


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class OrderIn(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


# Health and helpers
@app.get("/")
def root():
    return {"message": "E-commerce API running"}


@app.get("/test")
def test_database(services: Services = Depends(get_services)):
    db = services.database
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if services.settings.database_url else "❌ Not Set",
        "database_name": "✅ Set" if services.settings.database_name else "❌ Not Set",
        "connection_status": "Not Connected",
        "storage": "mongodb" if db is not None else "memory",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/register", response_model=TokenResponse)
def register(payload: RegisterRequest, services: Services = Depends(get_services)):
    return services.auth.register(payload.email, payload.password, payload.first_name, payload.last_name)


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    return services.auth.login(payload.email, payload.password)


@app.post("/auth/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, services: Services = Depends(get_services)):
    return services.auth.refresh(payload.refresh_token)


@app.get("/auth/me", response_model=UserOut)
def me(current_user: UserOut = Depends(get_current_user)):
    return current_user


# Users
@app.get("/users/profile", response_model=UserOut)
def get_profile(current_user: UserOut = Depends(get_current_user)):
    return current_user


@app.put("/users/profile", response_model=UserOut)
def update_profile(update: ProfileUpdate, current_user: UserOut = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    user = services.users.update_profile(current_user.id, **update.model_dump(exclude_unset=True))
    if user is None:
        raise NotFoundError("User not found")
    return user


@app.get("/users", response_model=List[UserOut])
def list_users(admin: UserOut = Depends(require_admin), services: Services = Depends(get_services)):
    return services.users.find_all()


# Products
@app.get("/products", response_model=ProductPage)
def list_products(page: int = 1, limit: int = 20, category: Optional[str] = None, categories: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None, search: Optional[str] = None,
                  services: Services = Depends(get_services)):
    category_list = [c.strip() for c in categories.split(",") if c.strip()] if categories else None
    return services.products.search(page=page, limit=limit, category=category, categories=category_list,
                                    min_price=min_price, max_price=max_price, search=search)


@app.get("/products/categories", response_model=List[Category])
def list_categories(services: Services = Depends(get_services)):
    return services.products.categories()


@app.get("/products/category/{category}", response_model=List[ProductOut])
def products_by_category(category: str, services: Services = Depends(get_services)):
    return services.products.find_by_category(category)


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, services: Services = Depends(get_services)):
    product = services.products.find_one(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/products/{product_id}/related", response_model=List[ProductOut])
def related_products(product_id: str, limit: int = 4, services: Services = Depends(get_services)):
    return services.products.find_related(product_id, limit)


@app.post("/products", response_model=ProductOut)
def create_product(payload: ProductIn, admin: UserOut = Depends(require_admin),
                   services: Services = Depends(get_services)):
    product = Product(**payload.model_dump(exclude={"id"}))
    return services.products.create(product, payload.id)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, admin: UserOut = Depends(require_admin),
                   services: Services = Depends(get_services)):
    return {"id": product_id, "deleted": services.products.remove(product_id)}


# Reviews
@app.get("/products/{product_id}/reviews", response_model=List[ReviewOut])
def list_reviews(product_id: str, services: Services = Depends(get_services)):
    return services.reviews.find_by_product(product_id)


@app.post("/products/{product_id}/reviews", response_model=ReviewOut)
def create_review(product_id: str, payload: ReviewIn, user: UserOut = Depends(get_current_user),
                  services: Services = Depends(get_services)):
    return services.reviews.create(user.id, product_id, payload.rating, payload.comment)


# Cart
@app.get("/cart", response_model=Cart)
def get_cart(user: UserOut = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.carts.summary(user.id)


@app.post("/cart", response_model=Cart)
def add_to_cart(item: CartItemIn, user: UserOut = Depends(get_current_user),
                services: Services = Depends(get_services)):
    product = services.products.find_one(item.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    services.carts.add_item(user.id, CartItem(
        id=product.id,
        quantity=item.quantity,
        name=product.name,
        price=product.price,
        image_url=product.image_url,
    ))
    return services.carts.summary(user.id)


@app.put("/cart/{item_id}", response_model=Cart)
def update_cart_item(item_id: str, payload: CartItemUpdate, user: UserOut = Depends(get_current_user),
                     services: Services = Depends(get_services)):
    services.carts.update_quantity(user.id, item_id, payload.quantity)
    return services.carts.summary(user.id)


@app.delete("/cart/{item_id}", response_model=Cart)
def remove_from_cart(item_id: str, user: UserOut = Depends(get_current_user),
                     services: Services = Depends(get_services)):
    services.carts.remove_item(user.id, item_id)
    return services.carts.summary(user.id)


@app.delete("/cart", response_model=Cart)
def clear_cart(user: UserOut = Depends(get_current_user), services: Services = Depends(get_services)):
    services.carts.clear_cart(user.id)
    return services.carts.summary(user.id)


# Orders
@app.post("/orders", response_model=OrderOut)
def create_order(payload: OrderIn, user: UserOut = Depends(get_current_user),
                 services: Services = Depends(get_services)):
    return services.orders.create_from_cart(user.id, payload.shipping_address, payload.billing_address)


@app.get("/orders", response_model=List[OrderOut])
def list_orders(user: UserOut = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.orders.find_by_user(user.id)


@app.get("/orders/admin/all", response_model=List[OrderOut])
def list_all_orders(admin: UserOut = Depends(require_admin), services: Services = Depends(get_services)):
    return services.orders.find_all()


@app.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, user: UserOut = Depends(get_current_user), services: Services = Depends(get_services)):
    order = services.orders.find_one(order_id, user.id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.put("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(order_id: str, payload: StatusUpdate, admin: UserOut = Depends(require_admin),
                        services: Services = Depends(get_services)):
    order = services.orders.update_status(order_id, payload.status)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

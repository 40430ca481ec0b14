import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import accounts
import carts
import catalog
import favorites
import orders
from config import Settings, get_settings as load_app_settings
from database import connect, ensure_indexes
from dependencies import (
    get_current_user,
    get_db,
    get_media_host,
    get_payment_gateway,
    get_settings,
    read_payload,
    require,
    require_media_host,
)
from errors import ExternalServiceError, ValidationError, register_error_handlers
from log import configure_logging, get_logger
from media import build_media_host, check_image
from payments import build_payment_gateway
from payloads import (
    CartItemCreate,
    CartItemUpdate,
    CheckoutRequest,
    FavoriteCreate,
    LoginRequest,
    OrderStatusUpdate,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    RegisterWithRoleRequest,
)
from responses import send_success
from schemas import OrderStatus
from security import Capability, Role

VERSION = "1.0.0"
STARTED_AT = time.monotonic()

logger = get_logger(__name__)

SortKey = Literal["price_asc", "price_desc", "newest", "popular"]

# Health
health_router = APIRouter(tags=["health"])


@health_router.get("/health")
def health(settings: Settings = Depends(get_settings)):
    return send_success({
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": settings.environment,
        "version": VERSION,
    }, "Health check successful")


@health_router.get("/ready")
def ready(request: Request, db: Database = Depends(get_db)):
    try:
        db.list_collection_names()
    except PyMongoError as e:
        logger.error("database check failed", error=str(e))
        raise ExternalServiceError("Database unavailable") from e
    return send_success({
        "status": "READY",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "database": "OK",
            "payments": "OK" if request.app.state.payment_gateway is not None else "DISABLED",
            "media": "OK" if request.app.state.media_host is not None else "DISABLED",
        },
    }, "Service is ready")


# Auth
auth_router = APIRouter(prefix="/auth", tags=["auth"])


@auth_router.post("/register")
async def register(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    media_host=Depends(get_media_host),
):
    data, files = await read_payload(request)
    payload = RegisterRequest.model_validate(data)
    result = await accounts.register(db, settings, payload, files, media_host)
    return send_success(result, "User registered successfully", 201)


@auth_router.post("/register/with-role")
async def register_with_role(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    media_host=Depends(get_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_USERS)),
):
    data, files = await read_payload(request)
    payload = RegisterWithRoleRequest.model_validate(data)
    result = await accounts.register_with_role(db, settings, payload, files, media_host)
    return send_success(result, f"{payload.role} registered successfully", 201)


@auth_router.post("/register/admin")
async def register_admin(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    media_host=Depends(get_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_USERS)),
):
    data, files = await read_payload(request)
    payload = RegisterWithRoleRequest.model_validate(dict(data, role=Role.ADMIN.value))
    result = await accounts.register_with_role(db, settings, payload, files, media_host)
    return send_success(result, "admin registered successfully", 201)


@auth_router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    return send_success(accounts.login(db, settings, payload), "Login successful")


@auth_router.get("/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return send_success({"user": accounts.public_user(user)}, "Profile retrieved successfully")


@auth_router.put("/profile")
async def update_profile(
    request: Request,
    db: Database = Depends(get_db),
    media_host=Depends(get_media_host),
    user: dict = Depends(get_current_user),
):
    data, files = await read_payload(request)
    payload = ProfileUpdate.model_validate(data)
    result = await accounts.update_profile(db, user, payload, files, media_host)
    return send_success({"user": result}, "Profile updated successfully")


# Products
products_router = APIRouter(prefix="/products", tags=["products"])


@products_router.get("")
def list_products(
    db: Database = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    sort: SortKey = "newest",
    category: Optional[str] = None,
    tag: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
):
    query = catalog.build_filter(category, tag, min_price, max_price, in_stock)
    return send_success(catalog.list_products(db, query, sort, page, limit), "Products retrieved successfully")


@products_router.get("/search")
def search_products(
    db: Database = Depends(get_db),
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    sort: SortKey = "newest",
):
    if not q or not q.strip():
        raise ValidationError("Search query is required", [{"field": "q", "message": "Search query is required"}])
    result = catalog.list_products(db, catalog.search_filter(q), sort, page, limit)
    return send_success(result, "Search results retrieved successfully")


@products_router.get("/categories")
def get_categories(db: Database = Depends(get_db)):
    return send_success({"categories": catalog.categories(db)}, "Categories retrieved successfully")


@products_router.get("/slug/{slug}")
def get_product_by_slug(slug: str, db: Database = Depends(get_db)):
    return send_success({"product": catalog.get_by_slug(db, slug)}, "Product retrieved successfully")


@products_router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return send_success({"product": catalog.get_by_id(db, product_id)}, "Product retrieved successfully")


@products_router.post("")
async def create_product(
    request: Request,
    db: Database = Depends(get_db),
    media_host=Depends(get_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_CATALOG)),
):
    data, files = await read_payload(request)
    payload = ProductCreate.model_validate(data)
    uploaded = await catalog.upload_images(files, media_host)
    return send_success({"product": catalog.create_product(db, payload, uploaded)}, "Product created successfully", 201)


@products_router.put("/{product_id}")
async def update_product(
    product_id: str,
    request: Request,
    db: Database = Depends(get_db),
    media_host=Depends(get_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_CATALOG)),
):
    data, files = await read_payload(request)
    payload = ProductUpdate.model_validate(data)
    uploaded = await catalog.upload_images(files, media_host)
    product = catalog.update_product(db, product_id, payload, uploaded)
    return send_success({"product": product}, "Product updated successfully")


@products_router.delete("/{product_id}")
def delete_product(
    product_id: str,
    db: Database = Depends(get_db),
    _admin: dict = Depends(require(Capability.MANAGE_CATALOG)),
):
    catalog.delete_product(db, product_id)
    return send_success(None, "Product deleted successfully")


# Cart
cart_router = APIRouter(prefix="/cart", tags=["cart"])


@cart_router.get("")
def get_cart(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"cart": carts.view_cart(db, user["_id"])}, "Cart retrieved successfully")


@cart_router.get("/count")
def get_cart_count(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"itemCount": carts.item_count(db, user["_id"])}, "Cart count retrieved successfully")


@cart_router.post("/add")
def add_to_cart(payload: CartItemCreate, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"cart": carts.add_item(db, user["_id"], payload)}, "Item added to cart successfully")


@cart_router.put("/item/{item_id}")
def update_cart_item(
    item_id: str,
    payload: CartItemUpdate,
    db: Database = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return send_success({"cart": carts.update_item(db, user["_id"], item_id, payload)}, "Cart item updated successfully")


@cart_router.delete("/item/{item_id}")
def remove_cart_item(item_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"cart": carts.remove_item(db, user["_id"], item_id)}, "Item removed from cart successfully")


@cart_router.delete("")
def clear_cart(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"cart": carts.clear_cart(db, user["_id"])}, "Cart cleared successfully")


# Favorites
favorites_router = APIRouter(prefix="/favorites", tags=["favorites"])


@favorites_router.post("/add")
def add_favorite(payload: FavoriteCreate, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    favorite = favorites.add_favorite(db, user["_id"], payload.product_id)
    return send_success({"favorite": favorite}, "Product added to favorites successfully")


@favorites_router.delete("/{product_id}")
def remove_favorite(product_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    favorites.remove_favorite(db, user["_id"], product_id)
    return send_success(None, "Product removed from favorites successfully")


@favorites_router.get("")
def list_favorites(
    db: Database = Depends(get_db),
    user: dict = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
):
    return send_success(favorites.list_favorites(db, user["_id"], page, limit), "Favorites retrieved successfully")


@favorites_router.get("/check/{product_id}")
def check_favorite(product_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success(favorites.favorite_status(db, user["_id"], product_id), "Favorite status checked successfully")


# Orders
orders_router = APIRouter(prefix="/orders", tags=["orders"])


def callback_base(request: Request, settings: Settings) -> str:
    base = settings.public_base_url or str(request.base_url)
    return base.rstrip("/") + settings.api_prefix


@orders_router.post("/checkout")
def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway=Depends(get_payment_gateway),
    user: dict = Depends(get_current_user),
):
    result = orders.checkout(db, user, payload, gateway, callback_base(request, settings))
    return send_success(result, "Checkout session created successfully")


@orders_router.get("/success")
def payment_success(
    session_id: Optional[str] = None,
    db: Database = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    result = orders.confirm_payment(db, gateway, session_id)
    message = "Payment completed successfully" if result["paid"] else "Payment not completed"
    return send_success(result, message)


@orders_router.get("/cancel")
def payment_cancelled(session_id: Optional[str] = None):
    return send_success({"sessionId": session_id}, "Checkout was cancelled")


@orders_router.post("/webhook")
async def payment_webhook(request: Request, db: Database = Depends(get_db), gateway=Depends(get_payment_gateway)):
    body = await request.body()
    result = orders.handle_webhook(db, gateway, body, request.headers.get("stripe-signature"))
    return send_success(result, "Webhook processed")


@orders_router.get("/my-orders")
def my_orders(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"orders": orders.user_orders(db, user["_id"])}, "Orders retrieved successfully")


@orders_router.get("/my-orders/{order_id}")
def my_order(order_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return send_success({"order": orders.user_order(db, user["_id"], order_id)}, "Order retrieved successfully")


@orders_router.get("")
def all_orders(
    db: Database = Depends(get_db),
    _admin: dict = Depends(require(Capability.MANAGE_ORDERS)),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    status: Optional[OrderStatus] = None,
):
    result = orders.all_orders(db, page, limit, status.value if status else None)
    return send_success(result, "Orders retrieved successfully")


@orders_router.put("/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Database = Depends(get_db),
    _admin: dict = Depends(require(Capability.MANAGE_ORDERS)),
):
    order = orders.update_status(db, order_id, payload.status)
    return send_success({"order": order}, "Order status updated successfully")


# Images
images_router = APIRouter(prefix="/images", tags=["images"])


@images_router.post("/upload")
async def upload_image(
    request: Request,
    media_host=Depends(require_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_MEDIA)),
):
    _, files = await read_payload(request)
    if not files:
        raise ValidationError("No image file provided", [{"field": "file", "message": "No image file provided"}])
    upload = files[0]
    content = await upload.read()
    check_image(upload.filename, upload.content_type, len(content))
    image = media_host.upload_image(content)
    return send_success({"image": image.model_dump(by_alias=True)}, "Image uploaded successfully", 201)


@images_router.delete("/{public_id:path}")
def delete_image(
    public_id: str,
    media_host=Depends(require_media_host),
    _admin: dict = Depends(require(Capability.MANAGE_MEDIA)),
):
    media_host.delete_image(public_id)
    return send_success(None, "Image deleted successfully")


_UNSET = object()


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    payment_gateway=_UNSET,
    media_host=_UNSET,
) -> FastAPI:
    """Build the application; service adapters default to the ones the settings configure."""
    settings = settings or load_app_settings()
    configure_logging(settings.log_level, json=settings.environment == "production")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(app.state.db)
        logger.info("api started", environment=settings.environment, prefix=settings.api_prefix)
        yield

    app = FastAPI(title="E-commerce API", version=VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db if db is not None else connect(settings.database_url, settings.database_name)
    app.state.payment_gateway = build_payment_gateway(settings) if payment_gateway is _UNSET else payment_gateway
    app.state.media_host = build_media_host(settings) if media_host is _UNSET else media_host

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    register_error_handlers(app, expose_details=settings.is_development)

    @app.get("/")
    def root():
        prefix = settings.api_prefix
        return {
            "message": "Welcome to the Ecommerce API",
            "version": VERSION,
            "environment": settings.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "endpoints": {
                "auth": f"{prefix}/auth",
                "products": f"{prefix}/products",
                "cart": f"{prefix}/cart",
                "orders": f"{prefix}/orders",
                "favorites": f"{prefix}/favorites",
            },
        }

    for router in (health_router, auth_router, products_router, cart_router, favorites_router, orders_router, images_router):
        app.include_router(router, prefix=settings.api_prefix)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)

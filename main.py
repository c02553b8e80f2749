import os
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import (
    create_token,
    get_current_user,
    get_storage,
    get_token_payload,
    hash_password,
    require_admin,
    verify_password,
)
from checkout import StorefrontError, change_order_status, place_order
from database import MemoryStorage
from logging_config import configure_logging
from schemas import (
    AuthResponse,
    CartItemIn,
    CartItemOut,
    CartQuantityIn,
    Category,
    CategoryIn,
    LoginRequest,
    OrderIn,
    OrderItemOut,
    OrderOut,
    OrderStatusIn,
    Product,
    ProductIn,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    User,
    UserOut,
)

# Settings
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
STRICT_ORDER_STATUS = os.getenv("STRICT_ORDER_STATUS", "false").lower() in ("1", "true", "yes")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

configure_logging(level=os.getenv("STOREFRONT_LOG_LEVEL", "INFO"), log_dir=os.getenv("STOREFRONT_LOG_DIR"))
logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="Storefront API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.state.storage = MemoryStorage(admin_password=ADMIN_PASSWORD)
app.state.strict_order_status = STRICT_ORDER_STATUS

# Product fields that may not be cleared to null by a partial update
_REQUIRED_PRODUCT_FIELDS = {"name", "price", "category_id", "inventory", "featured"}


# Error handling
@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        errors.append({"field": field, "message": err.get("msg", "Invalid value")})
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Helpers
def user_out(user: User) -> UserOut:
    return UserOut.model_validate(user.model_dump(exclude={"password_hash"}))


def cart_item_out(storage, item) -> CartItemOut:
    return CartItemOut(**item.model_dump(), product=storage.get_product(item.product_id))


def order_out(storage, order, items=None) -> OrderOut:
    if items is None:
        items = storage.get_order_items(order.id)
    return OrderOut(
        **order.model_dump(),
        items=[OrderItemOut(**i.model_dump(), product=storage.get_product(i.product_id)) for i in items],
    )


# Health
@app.get("/")
def root():
    return {"message": "Storefront API running"}


# Auth
@app.post("/api/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, storage=Depends(get_storage)):
    if storage.get_user_by_username(payload.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    if storage.get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = storage.create_user({
        "username": payload.username,
        "email": payload.email,
        "name": payload.name,
        "password_hash": hash_password(payload.password),
    })
    logger.info("User registered", extra={"user_id": user.id})
    return AuthResponse(token=create_token(user), user=user_out(user))


@app.post("/api/login", response_model=AuthResponse)
def login(payload: LoginRequest, storage=Depends(get_storage)):
    user = storage.get_user_by_username(payload.username)
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning("Login failed", extra={"username": payload.username})
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return AuthResponse(token=create_token(user), user=user_out(user))


@app.post("/api/logout")
def logout(payload: dict = Depends(get_token_payload), storage=Depends(get_storage)):
    storage.revoke_token(payload.get("jti", ""), payload.get("exp"))
    return {"message": "Logged out"}


@app.get("/api/user", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user_out(user)


@app.put("/api/user/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), storage=Depends(get_storage)):
    update = payload.model_dump(exclude_unset=True)
    if update.get("email"):
        other = storage.get_user_by_email(update["email"])
        if other and other.id != user.id:
            raise HTTPException(status_code=400, detail="Email already registered")
    elif "email" in update:
        update.pop("email")
    updated = storage.update_user(user.id, update)
    return user_out(updated)


# Categories
@app.get("/api/categories", response_model=List[Category])
def list_categories(storage=Depends(get_storage)):
    return storage.get_categories()


@app.post("/api/categories", response_model=Category, status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: CategoryIn, storage=Depends(get_storage)):
    if storage.get_category_by_slug(payload.slug):
        raise HTTPException(status_code=400, detail="Category exists")
    return storage.create_category(payload.model_dump())


# Products
@app.get("/api/products", response_model=List[Product])
def list_products(category_id: Optional[int] = Query(None, alias="categoryId"), search: Optional[str] = None,
                  featured: Optional[bool] = None, storage=Depends(get_storage)):
    return storage.get_products(category_id=category_id, search=search, featured=featured)


@app.get("/api/products/featured", response_model=List[Product])
def featured_products(limit: Optional[int] = Query(None, ge=0), storage=Depends(get_storage)):
    return storage.get_featured_products(limit)


@app.get("/api/products/{product_id}", response_model=Product)
def get_product(product_id: int, storage=Depends(get_storage)):
    product = storage.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/api/products", response_model=Product, status_code=201)
def create_product(payload: ProductIn, user: User = Depends(require_admin), storage=Depends(get_storage)):
    product = storage.create_product(payload.model_dump())
    logger.info("Product created", extra={"user_id": user.id, "product_id": product.id})
    return product


@app.put("/api/products/{product_id}", response_model=Product)
def update_product(product_id: int, payload: ProductUpdate, user: User = Depends(require_admin),
                   storage=Depends(get_storage)):
    update = {k: v for k, v in payload.model_dump(exclude_unset=True).items()
              if v is not None or k not in _REQUIRED_PRODUCT_FIELDS}
    product = storage.update_product(product_id, update)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product updated", extra={"user_id": user.id, "product_id": product_id, "fields": sorted(update)})
    return product


@app.delete("/api/products/{product_id}", status_code=204)
def delete_product(product_id: int, user: User = Depends(require_admin), storage=Depends(get_storage)):
    if not storage.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product deleted", extra={"user_id": user.id, "product_id": product_id})
    return Response(status_code=204)


@app.post("/api/admin/seed", dependencies=[Depends(require_admin)])
def seed_products(storage=Depends(get_storage)):
    added = storage.seed_sample_products()
    if not added:
        return {"seeded": False, "message": "Products already exist"}
    return {"seeded": True, "count": added}


# Cart
@app.get("/api/cart", response_model=List[CartItemOut])
def get_cart(user: User = Depends(get_current_user), storage=Depends(get_storage)):
    return [cart_item_out(storage, it) for it in storage.get_cart_items(user.id)]


@app.post("/api/cart", response_model=CartItemOut, status_code=201)
def cart_add(item: CartItemIn, user: User = Depends(get_current_user), storage=Depends(get_storage)):
    with storage.transaction():
        product = storage.get_product(item.product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        existing = storage.get_cart_item(user.id, item.product_id)
        in_cart = existing.quantity if existing else 0
        if product.inventory < in_cart + item.quantity:
            raise HTTPException(status_code=400, detail="Not enough inventory")
        row = storage.add_to_cart(user.id, item.product_id, item.quantity)
    return CartItemOut(**row.model_dump(), product=product)


@app.put("/api/cart/{product_id}", response_model=CartItemOut)
def cart_update(product_id: int, payload: CartQuantityIn, user: User = Depends(get_current_user),
                storage=Depends(get_storage)):
    with storage.transaction():
        product = storage.get_product(product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        if product.inventory < payload.quantity:
            raise HTTPException(status_code=400, detail="Not enough inventory")
        row = storage.update_cart_item(user.id, product_id, payload.quantity)
    if not row:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return CartItemOut(**row.model_dump(), product=product)


@app.delete("/api/cart/{product_id}", status_code=204)
def cart_remove(product_id: int, user: User = Depends(get_current_user), storage=Depends(get_storage)):
    if not storage.remove_from_cart(user.id, product_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return Response(status_code=204)


@app.delete("/api/cart", status_code=204)
def cart_clear(user: User = Depends(get_current_user), storage=Depends(get_storage)):
    storage.clear_cart(user.id)
    return Response(status_code=204)


# Orders
@app.get("/api/orders", response_model=List[OrderOut])
def list_orders(user: User = Depends(get_current_user), storage=Depends(get_storage)):
    orders = storage.get_orders() if user.is_admin else storage.get_orders(user.id)
    orders.sort(key=lambda o: o.id, reverse=True)
    return [order_out(storage, o) for o in orders]


@app.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, user: User = Depends(get_current_user), storage=Depends(get_storage)):
    order = storage.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return order_out(storage, order)


@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(payload: OrderIn, user: User = Depends(get_current_user), storage=Depends(get_storage)):
    try:
        order, items = place_order(storage, user.id, payload.shipping_address)
    except StorefrontError as e:
        logger.info("Order rejected", extra={"user_id": user.id, "reason": e.message})
        raise
    return order_out(storage, order, items)


@app.put("/api/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(order_id: int, payload: OrderStatusIn, request: Request,
                        user: User = Depends(require_admin), storage=Depends(get_storage)):
    order = change_order_status(storage, order_id, payload.status, strict=request.app.state.strict_order_status)
    return order_out(storage, order)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

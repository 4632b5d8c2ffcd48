# app/main.py
from fastapi import FastAPI, Request, HTTPException, Query, Depends, Header, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv
import os
import logging
import sqlite3
import time

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

from .db import init_db, count_products
from .errors import PersistenceFailed, StoreError
from .image_editor import ImageEditSession
from .loader import load_products_to_db
from . import orders as orders_db
from .product_utils import (
    get_products_simple,
    get_product,
    get_categories,
    create_product,
    update_product,
    delete_product,
    set_product_images,
)
from .profiles import ensure_profile, get_profile, list_profiles, set_admin, count_profiles
from .schemas import (
    AddCartItemRequest,
    AdminFlagUpdate,
    CartResponse,
    CheckoutForm,
    CheckoutStatus,
    ImageEditRequest,
    Order,
    OrderStatusUpdate,
    Product,
    ProductIn,
    ProductUpdate,
    Profile,
    StoreStats,
    UpdateQuantityRequest,
)
from .services.checkout import CheckoutState
from .services.identity import Identity, identity_from_token
from .services.sessions import StoreSession, sessions
from storage.client import StorageClient
from storage.images import replace_image, upload_images, validate_image_file

app = FastAPI(title="Boutique Store API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    logger.info("📦 Initializing database...")
    init_db()
    logger.info(f"✅ Database ready, {count_products()} products in catalog")


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.warning(f"⚠️ {type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "fields": getattr(exc, "fields", []),
        },
    )


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.error(f"❌ Database error on {request.url.path}: {exc}")
    return await store_error_handler(request, PersistenceFailed("Storage is unavailable, please try again"))


# ==================== DEPENDENCIES ====================

def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity_from_token(authorization.split(" ", 1)[1])


def get_session(identity: Identity = Depends(get_identity)) -> StoreSession:
    return sessions.get(identity)


def require_admin(identity: Identity = Depends(get_identity)) -> Profile:
    profile = ensure_profile(identity.id, identity.email, identity.full_name)
    if not profile.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return profile


def get_storage():
    client = StorageClient()
    try:
        yield client
    finally:
        client.close()


# ==================== ENDPOINTS ====================

@app.get("/")
def root():
    return {
        "status": "ok",
        "service": "Boutique Store API",
        "version": "1.0.0",
        "endpoints": {
            "products": "GET /products - Catalog with search, category and price sort",
            "cart": "GET|POST|PATCH|DELETE /cart - Cart of the signed-in user",
            "checkout": "POST /checkout - Place a cash-on-delivery order",
            "orders": "GET /orders - Orders of the signed-in user",
            "admin": "/admin/* - Products, orders and users back-office",
            "health": "GET /health - API status"
        }
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "products_count": count_products()
    }


# ---------- Auth ----------

@app.get("/auth/me")
def me(identity: Identity = Depends(get_identity)):
    profile = ensure_profile(identity.id, identity.email, identity.full_name)
    return {"id": identity.id, "email": identity.email, "is_admin": profile.is_admin}


@app.post("/auth/sign-out")
def sign_out(identity: Identity = Depends(get_identity)):
    ended = sessions.end(identity.id)
    return {"ok": True, "session_ended": ended}


# ---------- Catalog ----------

class ProductsResponse(BaseModel):
    items: List[Product]
    total: int
    page: int
    page_size: int
    total_pages: int


@app.get("/products", response_model=ProductsResponse)
def get_products(
    q: Optional[str] = Query(None, description="Search in name, description and category"),
    category: Optional[str] = Query(None, description="Filter by category ('all' for every category)"),
    sort: Optional[str] = Query(None, description="low-to-high | high-to-low | newest"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100)
):
    products, total = get_products_simple(q=q, category=category, sort=sort, page=page, page_size=page_size)
    total_pages = (total + page_size - 1) // page_size
    return ProductsResponse(
        items=products,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages
    )


@app.get("/products/featured", response_model=List[Product])
def get_featured_products(limit: int = Query(8, ge=1, le=50)):
    products, _ = get_products_simple(featured=True, sort="newest", page_size=limit)
    return products


@app.get("/products/{product_id}", response_model=Product)
def get_product_detail(product_id: int):
    product = get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.get("/categories")
def list_categories():
    return {"categories": get_categories()}


# ---------- Cart ----------

def _cart_response(session: StoreSession) -> CartResponse:
    cart = session.cart
    return CartResponse(
        items=cart.items,
        item_count=cart.item_count,
        total=cart.total,
        stock_warnings=cart.over_stock(),
    )


@app.get("/cart", response_model=CartResponse)
def get_cart(session: StoreSession = Depends(get_session)):
    session.cart.load()
    return _cart_response(session)


@app.post("/cart/items", response_model=CartResponse)
def add_cart_item(body: AddCartItemRequest, session: StoreSession = Depends(get_session)):
    product = get_product(body.product_id)
    if product is not None:
        if product.sizes and not body.size:
            raise HTTPException(status_code=422, detail="Please select a size")
        if product.colors and not body.color:
            raise HTTPException(status_code=422, detail="Please select a color")
    session.cart.add_item(body.product_id, body.quantity, body.size, body.color)
    return _cart_response(session)


@app.patch("/cart/items/{item_id}", response_model=CartResponse)
def update_cart_item(item_id: int, body: UpdateQuantityRequest, session: StoreSession = Depends(get_session)):
    session.cart.update_quantity(item_id, body.quantity)
    return _cart_response(session)


@app.delete("/cart/items/{item_id}", response_model=CartResponse)
def remove_cart_item(item_id: int, session: StoreSession = Depends(get_session)):
    session.cart.remove_item(item_id)
    return _cart_response(session)


@app.delete("/cart", response_model=CartResponse)
def clear_cart(session: StoreSession = Depends(get_session)):
    session.cart.clear()
    return _cart_response(session)


# ---------- Checkout ----------

def _checkout_status(session: StoreSession) -> CheckoutStatus:
    checkout = session.checkout
    return CheckoutStatus(
        state=checkout.state.value,
        form=checkout.form,
        order=checkout.last_order,
        total=session.cart.total,
    )


@app.get("/checkout", response_model=CheckoutStatus)
def get_checkout(session: StoreSession = Depends(get_session)):
    return _checkout_status(session)


@app.post("/checkout/open", response_model=CheckoutStatus)
def open_checkout(session: StoreSession = Depends(get_session)):
    session.checkout.open_form()
    return _checkout_status(session)


@app.post("/checkout", response_model=CheckoutStatus)
def place_order(form: CheckoutForm, session: StoreSession = Depends(get_session)):
    """
    Places a cash-on-delivery order for the whole cart.
    Opens the checkout form first when the client skipped that step.
    """
    start_time = time.time()
    checkout = session.checkout

    if checkout.state == CheckoutState.IDLE:
        checkout.open_form()

    order = checkout.submit(form)

    logger.info(
        f"✅ [CHECKOUT] Order {order.id} completed - "
        f"Items: {len(order.items)}, "
        f"Total: {order.total_amount:.2f}, "
        f"Time: {time.time() - start_time:.2f}s"
    )
    return _checkout_status(session)


@app.delete("/checkout", response_model=CheckoutStatus)
def close_checkout(session: StoreSession = Depends(get_session)):
    session.checkout.close_form()
    return _checkout_status(session)


@app.post("/checkout/reset", response_model=CheckoutStatus)
def reset_checkout(session: StoreSession = Depends(get_session)):
    session.checkout.reset()
    return _checkout_status(session)


# ---------- Orders ----------

@app.get("/orders", response_model=List[Order])
def get_user_orders(identity: Identity = Depends(get_identity)):
    return orders_db.list_orders(user_id=identity.id)


@app.get("/orders/{order_id}", response_model=Order)
def get_order_details(order_id: int, identity: Identity = Depends(get_identity)):
    order = orders_db.get_order(order_id, user_id=identity.id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# ==================== ADMIN ====================

@app.get("/admin/stats", response_model=StoreStats)
def admin_stats(admin: Profile = Depends(require_admin)):
    totals = orders_db.get_order_totals()
    return StoreStats(
        total_products=count_products(),
        total_orders=totals["total_orders"],
        total_users=count_profiles(),
        total_revenue=totals["total_revenue"],
    )


@app.get("/admin/products", response_model=ProductsResponse)
def admin_list_products(
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: Profile = Depends(require_admin)
):
    products, total = get_products_simple(q=q, include_inactive=True, sort="newest", page=page, page_size=page_size)
    return ProductsResponse(
        items=products,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size
    )


@app.post("/admin/products", response_model=Product, status_code=201)
def admin_create_product(body: ProductIn, admin: Profile = Depends(require_admin)):
    if not body.name.strip() or not body.category.strip():
        raise HTTPException(status_code=422, detail="Name and category are required")
    return create_product(body)


@app.put("/admin/products/{product_id}", response_model=Product)
def admin_update_product(product_id: int, body: ProductUpdate, admin: Profile = Depends(require_admin)):
    if body.name is not None and not body.name.strip():
        raise HTTPException(status_code=422, detail="Name and category are required")
    if body.category is not None and not body.category.strip():
        raise HTTPException(status_code=422, detail="Name and category are required")
    product = update_product(product_id, body)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: int, admin: Profile = Depends(require_admin)):
    if not delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


@app.post("/admin/products/import")
def admin_import_products(file: UploadFile = File(...), admin: Profile = Depends(require_admin)):
    try:
        result = load_products_to_db(file.file)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", **result}


def _admin_product(product_id: int) -> Product:
    product = get_product(product_id, active_only=False)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.post("/admin/products/{product_id}/images")
def admin_upload_product_images(
    product_id: int,
    files: List[UploadFile] = File(...),
    admin: Profile = Depends(require_admin),
    storage: StorageClient = Depends(get_storage),
):
    """
    Uploads new images for a product, one after another.
    Invalid files are skipped and reported; new images go first in the list.
    """
    product = _admin_product(product_id)

    accepted = []
    rejected: List[Dict[str, Any]] = []
    for upload in files:
        data = upload.file.read()
        is_valid, error = validate_image_file(upload.content_type, len(data))
        if not is_valid:
            rejected.append({"file_name": upload.filename, "error": error})
            continue
        accepted.append((data, upload.filename or "image.jpg", upload.content_type))

    uploaded = upload_images(storage, accepted)
    product = _save_product_images(storage, product_id, uploaded + product.images, uploaded=uploaded)

    return {"product": product, "uploaded": uploaded, "rejected": rejected}


@app.delete("/admin/products/{product_id}/images/{index}", response_model=Product)
def admin_remove_product_image(
    product_id: int,
    index: int,
    admin: Profile = Depends(require_admin),
    storage: StorageClient = Depends(get_storage),
):
    product = _admin_product(product_id)
    if index < 0 or index >= len(product.images):
        raise HTTPException(status_code=404, detail="Image not found")

    images = list(product.images)
    removed = images.pop(index)
    product = _save_product_images(storage, product_id, images)
    storage.delete(removed)
    return product


def _save_product_images(
    storage: StorageClient,
    product_id: int,
    images: List[str],
    uploaded: Optional[List[str]] = None,
) -> Product:
    """
    Stores a product's image list. Files in `uploaded` are removed from
    storage again when the list cannot be saved, so nothing is left orphaned.
    """
    try:
        return set_product_images(product_id, images)
    except sqlite3.Error as e:
        logger.error(f"❌ Error saving images of product {product_id}: {e}")
        for url in uploaded or []:
            storage.delete(url)
        raise PersistenceFailed("Failed to update product images") from e


def _run_image_edit(data: bytes, params: ImageEditRequest, on_save) -> bytes:
    displayed = None
    if params.displayed_width and params.displayed_height:
        displayed = (params.displayed_width, params.displayed_height)

    session = ImageEditSession.from_bytes(data, aspect=params.aspect, displayed_size=displayed)
    try:
        if params.crop is not None:
            session.complete_crop(params.crop)
        session.adjust(**params.adjustments.model_dump())
        return session.save(on_save)
    finally:
        session.discard()


@app.post("/admin/products/{product_id}/images/{index}/edit", response_model=Product)
def admin_edit_product_image(
    product_id: int,
    index: int,
    params: ImageEditRequest,
    admin: Profile = Depends(require_admin),
    storage: StorageClient = Depends(get_storage),
):
    """
    Edits an existing product image: the edited copy is uploaded under a new
    name, replaces the original in the product, and the original is deleted.
    """
    product = _admin_product(product_id)
    if index < 0 or index >= len(product.images):
        raise HTTPException(status_code=404, detail="Image not found")

    source = storage.download(product.images[index])
    replaced: Dict[str, Any] = {}

    def save_edited(blob: bytes) -> None:
        replaced["images"], replaced["old_url"] = replace_image(storage, product.images, index, blob)

    _run_image_edit(source, params, save_edited)
    product = _save_product_images(
        storage, product_id, replaced["images"], uploaded=[replaced["images"][index]]
    )
    storage.delete(replaced["old_url"])
    return product


@app.post("/admin/images/edit")
def admin_edit_image(
    file: UploadFile = File(...),
    params: str = Form("{}"),
    admin: Profile = Depends(require_admin),
):
    """
    Edits an image that has not been uploaded yet and returns the JPEG.
    `params` is an ImageEditRequest as JSON.
    """
    try:
        edit = ImageEditRequest.model_validate_json(params)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    data = file.file.read()
    is_valid, error = validate_image_file(file.content_type, len(data))
    if not is_valid:
        raise HTTPException(status_code=422, detail=error)

    blob = _run_image_edit(data, edit, lambda _: None)
    return Response(content=blob, media_type="image/jpeg")


@app.get("/admin/orders", response_model=List[Order])
def admin_list_orders(admin: Profile = Depends(require_admin)):
    return orders_db.list_orders()


@app.patch("/admin/orders/{order_id}/status", response_model=Order)
def admin_update_order_status(order_id: int, body: OrderStatusUpdate, admin: Profile = Depends(require_admin)):
    if not orders_db.update_order_status(order_id, body.status):
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info(f"📦 Order {order_id} status -> {body.status.value}")
    return orders_db.get_order(order_id)


@app.get("/admin/users", response_model=List[Profile])
def admin_list_users(admin: Profile = Depends(require_admin)):
    return list_profiles()


@app.patch("/admin/users/{user_id}/admin", response_model=Profile)
def admin_set_admin(user_id: str, body: AdminFlagUpdate, admin: Profile = Depends(require_admin)):
    if not set_admin(user_id, body.is_admin):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info(f"👤 User {user_id} {'promoted to' if body.is_admin else 'removed from'} admin")
    return get_profile(user_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

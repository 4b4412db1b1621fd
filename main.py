import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import config
import database
from catalog import catalog_router, get_product_or_404
from database import create_document, envelope, get_db, now, paginate, parse_pagination, to_object_id
from logger import get_logger
from orders import InsufficientStockError, MissingProductError, place_order, populate_order
from schemas import Cart, CartItem, User
from security import authentication, authorization, create_session_token, get_token, hash_password, verify_password

_logger = get_logger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.connect()
    yield
    database.close()


# FastAPI app
app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses share one shape: {"message": ..., "success": false}
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail, "success": False},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in e.get("loc", ()) if p not in ("body", "query", "form")), "message": e.get("msg")}
        for e in exc.errors()
    ]
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    _logger.warning(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": message, "success": False, "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    _logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error", "success": False})


# Pydantic models
class Credentials(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class UserCreate(Credentials):
    name: Optional[str] = None


class CartProduct(BaseModel):
    product_id: str


class CartQuantity(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, strict=True)


class OrderCreate(BaseModel):
    cart_id: str
    shipping_address: Optional[str] = None


def _user_oid(session: Dict[str, Any]) -> ObjectId:
    return ObjectId(session["user_id"])


# Auth
def _register(db: Database, body: UserCreate, is_admin: bool) -> dict:
    if db["user"].find_one({"email": body.email}, {"_id": 1}):
        _logger.warning(f"Email already exists: {body.email}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="The email exists. Please use another email or sign in")
    _logger.debug("Hashing password...")
    user = User(name=body.name, email=body.email, password_hash=hash_password(body.password), is_admin=is_admin)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="The email exists. Please use another email or sign in")
    return db["user"].find_one({"_id": ObjectId(user_id)})


@app.post("/add-user", status_code=status.HTTP_201_CREATED)
def add_user(body: UserCreate, db: Database = Depends(get_db)):
    _logger.info("Incoming request to create user")
    user = _register(db, body, is_admin=False)
    _logger.info(f"User created successfully with ID: {user['_id']}")
    return envelope("User account created successfully", user)


BOOTSTRAP_MARKER = {"_id": "first_admin"}


def _claim_bootstrap(db: Database) -> bool:
    """Only one caller may create the first admin without a session."""
    try:
        db["setting"].insert_one(dict(BOOTSTRAP_MARKER, created_at=now()))
    except DuplicateKeyError:
        return False
    return True


@app.post("/add-admin", status_code=status.HTTP_201_CREATED)
def add_admin(body: UserCreate, token: Optional[str] = Depends(get_token), db: Database = Depends(get_db)):
    _logger.info("Incoming request to add an admin")
    bootstrap = not db["user"].count_documents({"is_admin": True}, limit=1) and _claim_bootstrap(db)
    if bootstrap:
        _logger.warning("No admin exists yet, creating the first admin account")
    else:
        caller = authorization(token, db)
        _logger.debug(f"Admin {caller['user_id']} is adding an admin")
    try:
        user = _register(db, body, is_admin=True)
    except Exception:
        if bootstrap:
            db["setting"].delete_one(BOOTSTRAP_MARKER)
        raise
    _logger.info(f"Admin created successfully with ID: {user['_id']}")
    return envelope("Admin account created successfully", user)


@app.post("/login-user")
def login(body: Credentials, response: Response, db: Database = Depends(get_db)):
    _logger.info("Incoming request to login a user")
    user = db["user"].find_one({"email": body.email})
    if not user:
        _logger.warning("User with provided email not found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid email or password")
    if not verify_password(body.password, user.get("password_hash", "")):
        _logger.warning("Invalid login attempt: password mismatch")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    response.set_cookie(
        config.COOKIE_NAME,
        create_session_token(user),
        max_age=config.SESSION_MAX_AGE,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
    )
    _logger.info(f"User {user['_id']} logged in")
    return envelope("Login successful")


@app.post("/logout-user")
def logout(response: Response):
    response.delete_cookie(config.COOKIE_NAME, httponly=True, secure=config.COOKIE_SECURE, samesite="lax")
    return envelope("Logout successful")


@app.get("/me")
def get_me(session: dict = Depends(authentication), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": _user_oid(session)})
    return envelope("Profile fetched successfully", user)


# Catalog
app.include_router(catalog_router(authentication))


# Cart
def _cart_or_404(db: Database, user_id: ObjectId) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        _logger.warning(f"User with ID: {user_id} does not have a cart")
        raise HTTPException(status_code=404, detail="Cart does not exist")
    return cart


def _line_index(cart: dict, product_id: ObjectId) -> int:
    for i, item in enumerate(cart.get("items", [])):
        if item["product_id"] == product_id:
            return i
    _logger.warning(f"Product with ID: {product_id} is not in cart {cart['_id']}")
    raise HTTPException(status_code=404, detail="Product not in user cart")


def _save_items(db: Database, cart: dict) -> dict:
    db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": cart["items"], "updated_at": now()}})
    return db["cart"].find_one({"_id": cart["_id"]})


@app.post("/carts")
def add_to_cart(body: CartProduct, response: Response, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    _logger.debug("Incoming request to add to cart...")
    user_id = _user_oid(session)
    product_id = to_object_id(body.product_id, "product")
    get_product_or_404(db, product_id)

    cart = db["cart"].find_one({"user_id": user_id})
    if cart is None:
        cart_id = ObjectId(create_document(db, "cart", Cart(user_id=user_id, items=[CartItem(product_id=product_id)])))
        db["user"].update_one({"_id": user_id}, {"$set": {"cart_id": cart_id}})
        _logger.info(f"Cart {cart_id} created for user {user_id}")
        response.status_code = status.HTTP_201_CREATED
        return envelope("Cart created", db["cart"].find_one({"_id": cart_id}))

    items = cart.get("items", [])
    for item in items:
        if item["product_id"] == product_id:
            item["quantity"] += 1
            break
    else:
        items.append({"product_id": product_id, "quantity": 1})
    cart["items"] = items
    _logger.info(f"Product {product_id} added to cart {cart['_id']}")
    return envelope("Cart updated", _save_items(db, cart))


@app.get("/carts")
def get_cart(session: dict = Depends(authentication), db: Database = Depends(get_db)):
    cart = _cart_or_404(db, _user_oid(session))
    ids = [item["product_id"] for item in cart.get("items", [])]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1, "price": 1})}

    total = 0.0
    items = []
    for item in cart.get("items", []):
        product = products.get(item["product_id"])
        if product:
            total += product.get("price", 0) * item["quantity"]
        items.append(dict(item, product=product))
    cart = dict(cart, items=items, total_amount=round(total, 2))
    return envelope("Cart fetched successfully", cart)


@app.put("/carts")
def update_cart(body: CartQuantity, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    _logger.debug("Incoming request to update user cart.")
    product_id = to_object_id(body.product_id, "product")
    get_product_or_404(db, product_id)
    cart = _cart_or_404(db, _user_oid(session))

    index = _line_index(cart, product_id)
    cart["items"][index]["quantity"] = body.quantity
    _logger.info(f"Quantity of product {product_id} in cart {cart['_id']} set to {body.quantity}")
    return envelope("Cart updated successfully", _save_items(db, cart))


@app.delete("/carts")
def remove_from_cart(body: CartProduct, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    _logger.debug("Incoming request to remove from user cart")
    product_id = to_object_id(body.product_id, "product")
    get_product_or_404(db, product_id)
    cart = _cart_or_404(db, _user_oid(session))

    index = _line_index(cart, product_id)
    cart["items"].pop(index)
    _logger.info(f"Product with ID: {product_id} removed from cart {cart['_id']}")
    return envelope("Product removed from cart successfully", _save_items(db, cart))


# Orders
@app.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(body: OrderCreate, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    _logger.debug("Incoming request to create order...")
    user_id = _user_oid(session)
    cart_id = to_object_id(body.cart_id, "cart")
    if not db["cart"].find_one({"_id": cart_id}, {"_id": 1}):
        _logger.warning(f"CartId: {cart_id} does not exist in the db")
        raise HTTPException(status_code=404, detail="Cart does not exist")

    cart = db["cart"].find_one({"_id": cart_id, "user_id": user_id})
    if not cart or not cart.get("items"):
        _logger.warning(f"Cart for user {user_id} is empty or does not exist")
        raise HTTPException(status_code=404, detail="Cart is empty")

    try:
        placed = place_order(db, user_id, cart, body.shipping_address)
    except MissingProductError as e:
        _logger.warning(e.message)
        raise HTTPException(status_code=404, detail=e.message)
    except InsufficientStockError as e:
        _logger.warning(e.message)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return envelope("Order placed successfully", **placed)


@app.get("/orders")
def get_user_orders(page: Optional[str] = None, limit: Optional[str] = None, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    page_number, limit_number = parse_pagination(page, limit)
    orders, pagination = paginate(db, "order", {"user_id": _user_oid(session)}, page_number, limit_number)
    return envelope(
        "User orders fetched successfully" if orders else "No orders found",
        [populate_order(db, o) for o in orders],
        pagination=pagination,
    )


@app.get("/orders/{order_id}")
def get_user_order(order_id: str, session: dict = Depends(authentication), db: Database = Depends(get_db)):
    order = db["order"].find_one({"_id": to_object_id(order_id, "order"), "user_id": _user_oid(session)})
    if not order:
        _logger.warning(f"Order {order_id} not found for user {session['user_id']}")
        raise HTTPException(status_code=404, detail="Order not found")
    return envelope("User order fetched successfully", populate_order(db, order))


# Admin
app.include_router(admin.router)


# Health
@app.get("/")
def root():
    return {"message": "Storefront API running"}

@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        _logger.warning(f"Database health check failed: {e}")
        response["error"] = str(e)[:120]
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

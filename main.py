import os
import re
from typing import Annotated, Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, BeforeValidator
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import orders
from catalog import COLLECTION as PRODUCTS, CatalogStore
from database import create_document, get_documents, parse_object_id, utcnow
from errors import (
    Forbidden,
    InsufficientStock,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    StorefrontError,
    Unauthorized,
)
from logs import configure_logging
from pricing import effective_price
from schemas import (
    Order as OrderSchema,
    OrderCreate,
    PaymentUpdate,
    Product as ProductSchema,
    ProductUpdate,
    Discount,
    Ratings,
    Review,
    ReviewCreate,
    StatusUpdate,
    StockUpdate,
)

configure_logging()
logger = structlog.get_logger(__name__)


def _str_id(v: Any) -> str:
    if isinstance(v, ObjectId):
        return str(v)
    if not ObjectId.is_valid(str(v)):
        raise ValueError("Invalid ObjectId")
    return str(v)


ObjectIdStr = Annotated[str, BeforeValidator(_str_id)]


class ProductOut(ProductSchema):
    id: ObjectIdStr
    ratings: Ratings = Ratings()
    reviews: List[Review] = []
    effective_price: Optional[float] = None


class OrderOut(OrderSchema):
    id: ObjectIdStr
    can_be_cancelled: bool = False


class Pagination(BaseModel):
    next: Optional[Dict[str, int]] = None
    prev: Optional[Dict[str, int]] = None


class ProductPage(BaseModel):
    count: int
    total: int
    pagination: Pagination
    data: List[ProductOut]


class OrderPage(BaseModel):
    count: int
    total: int
    pagination: Pagination
    data: List[OrderOut]


ERROR_STATUS_CODES = {
    InvalidRequest: 400,
    NotFound: 404,
    InsufficientStock: 400,
    InvalidTransition: 400,
    Unauthorized: 401,
    Forbidden: 403,
}


app = FastAPI(title="Health Goods Storefront API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    logger.error("storage_error", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_type": "InternalError"},
    )


# -----------------
# Dependencies
# -----------------
def get_db() -> Database:
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def is_admin(x_admin_key: Optional[str] = Header(default=None)) -> bool:
    admin_key = os.getenv("ADMIN_API_KEY")
    if not admin_key:
        # If not set, allow for development convenience
        return True
    return x_admin_key == admin_key


def require_admin(admin: bool = Depends(is_admin)) -> bool:
    if not admin:
        raise Unauthorized("Invalid admin key")
    return True


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or parse_object_id(x_user_id) is None:
        raise Unauthorized("Not authorized, missing or invalid user id")
    return x_user_id


def paginate(page: int, limit: int, total: int) -> Pagination:
    skip = (page - 1) * limit
    pagination = Pagination()
    if page * limit < total:
        pagination.next = {"page": page + 1, "limit": limit}
    if skip > 0:
        pagination.prev = {"page": page - 1, "limit": limit}
    return pagination


def parse_sort(sort: Optional[str], default: str = "-created_at") -> List[tuple]:
    fields = [f.strip() for f in (sort or default).split(",") if f.strip()]
    return [(f[1:], -1) if f.startswith("-") else (f, 1) for f in fields]


def with_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def product_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = with_id(doc)
    out["effective_price"] = round(effective_price(doc), 2)
    return out


def order_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = with_id(doc)
    out["can_be_cancelled"] = orders.can_be_cancelled(doc.get("status", "Pending"))
    return out


@app.get("/")
def root():
    return {"name": "Health Goods Storefront API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": []
    }
    db = database.db
    try:
        if db is not None:
            response["database"] = "✅ Connected"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
    except PyMongoError as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# -----------------
# Products Endpoints
# -----------------
@app.get("/api/products", response_model=ProductPage)
def list_products(
    q: Optional[str] = Query(default=None, description="Search query"),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, ge=0),
    max_price: Optional[float] = Query(default=None, ge=0),
    in_stock: Optional[bool] = None,
    sort: Optional[str] = Query(default=None, description="e.g. 'price' or '-created_at,name'"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if q:
        query["$or"] = [
            {"name": {"$regex": re.escape(q), "$options": "i"}},
            {"description": {"$regex": re.escape(q), "$options": "i"}},
        ]
    if category:
        query["category"] = category
    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    if in_stock is not None:
        query["stock"] = {"$gt": 0} if in_stock else 0

    total = db[PRODUCTS].count_documents(query)
    docs = get_documents(db, PRODUCTS, query, sort=parse_sort(sort), skip=(page - 1) * limit, limit=limit)
    return {
        "count": len(docs),
        "total": total,
        "pagination": paginate(page, limit, total),
        "data": [product_out(d) for d in docs],
    }


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductSchema, _: bool = Depends(require_admin), db: Database = Depends(get_db)):
    doc = payload.model_dump()
    doc["ratings"] = Ratings().model_dump()
    doc["reviews"] = []
    new_id = create_document(db, PRODUCTS, doc)
    logger.info("product_created", product_id=new_id, name=payload.name)
    return product_out(CatalogStore(db).get(new_id))


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Database = Depends(get_db)):
    return product_out(CatalogStore(db).get(product_id))


@app.put("/api/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    _: bool = Depends(require_admin),
    db: Database = Depends(get_db),
):
    existing = CatalogStore(db).get(product_id)
    data = payload.model_dump(exclude_unset=True)
    if "discount" in data and data["discount"] is None:
        data["discount"] = Discount().model_dump()
    data["updated_at"] = utcnow()
    res = db[PRODUCTS].find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": data},
        return_document=ReturnDocument.AFTER,
    )
    if not res:
        raise NotFound("Product", product_id)
    return product_out(res)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, _: bool = Depends(require_admin), db: Database = Depends(get_db)):
    existing = CatalogStore(db).get(product_id)
    db[PRODUCTS].delete_one({"_id": existing["_id"]})
    logger.info("product_deleted", product_id=product_id)
    return {"deleted": True}


@app.put("/api/products/{product_id}/stock", response_model=ProductOut)
def update_stock(
    product_id: str,
    payload: StockUpdate,
    _: bool = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return product_out(CatalogStore(db).set_stock(product_id, payload.stock))


@app.post("/api/products/{product_id}/reviews", response_model=ProductOut, status_code=201)
def add_review(
    product_id: str,
    payload: ReviewCreate,
    user_id: str = Depends(current_user),
    db: Database = Depends(get_db),
):
    doc = CatalogStore(db).add_review(product_id, user_id, payload.rating, payload.comment)
    return product_out(doc)


# --------------
# Orders Endpoints
# --------------
@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(order: OrderCreate, user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    return order_out(orders.place_order(db, user_id, order))


@app.get("/api/orders/myorders", response_model=List[OrderOut])
def my_orders(user_id: str = Depends(current_user), db: Database = Depends(get_db)):
    return [order_out(d) for d in orders.list_user_orders(db, user_id)]


@app.get("/api/orders", response_model=OrderPage)
def list_orders(
    status: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: bool = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    total = db[orders.COLLECTION].count_documents(query)
    docs = get_documents(db, orders.COLLECTION, query, sort=parse_sort(sort), skip=(page - 1) * limit, limit=limit)
    return {
        "count": len(docs),
        "total": total,
        "pagination": paginate(page, limit, total),
        "data": [order_out(d) for d in docs],
    }


@app.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    user_id: str = Depends(current_user),
    admin: bool = Depends(is_admin),
    db: Database = Depends(get_db),
):
    doc = orders.get_order(db, order_id)
    if doc["user_id"] != user_id and not admin:
        raise Forbidden("Not authorized to access this order")
    return order_out(doc)


@app.put("/api/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    _: bool = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return order_out(orders.transition_status(db, order_id, payload.status))


@app.put("/api/orders/{order_id}/payment", response_model=OrderOut)
def update_payment_status(
    order_id: str,
    payload: PaymentUpdate,
    _: bool = Depends(require_admin),
    db: Database = Depends(get_db),
):
    doc = orders.update_payment_status(db, order_id, payload.payment_status, payload.transaction_id)
    return order_out(doc)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

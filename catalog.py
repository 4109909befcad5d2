"""
Catalog store: product lookup and stock counters.

Stock is only ever changed with single-document atomic updates. A reservation
is "decrement by N where stock >= N", so two requests racing for the same
product can never drive stock below zero.
"""
from typing import Any, Dict, Optional

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database

from database import parse_object_id, utcnow
from errors import InsufficientStock, InvalidRequest, NotFound

logger = structlog.get_logger(__name__)

COLLECTION = "product"


class CatalogStore:
    def __init__(self, database: Database):
        self._products = database[COLLECTION]

    def get(self, product_id: str) -> Dict[str, Any]:
        oid = parse_object_id(product_id)
        doc = self._products.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound("Product", str(product_id))
        return doc

    def reserve(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Atomically take `quantity` units out of stock and return the updated product.

        Raises InsufficientStock when fewer than `quantity` units remain, and
        NotFound when the product is gone.
        """
        if quantity < 1:
            raise InvalidRequest(f"Quantity must be at least 1, got {quantity}")
        oid = parse_object_id(product_id)
        if oid is None:
            raise NotFound("Product", str(product_id))

        doc = self._products.find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self._products.find_one({"_id": oid}, {"stock": 1, "name": 1})
            if current is None:
                raise NotFound("Product", str(product_id))
            logger.info(
                "insufficient_stock",
                product_id=str(product_id),
                requested=quantity,
                available=current.get("stock", 0),
            )
            raise InsufficientStock(str(product_id), quantity, current.get("stock", 0), current.get("name"))

        logger.debug("stock_reserved", product_id=str(product_id), quantity=quantity, stock=doc["stock"])
        return doc

    def release(self, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        """Put `quantity` units back. Returns None if the product has since been deleted."""
        oid = parse_object_id(product_id)
        doc = self._products.find_one_and_update(
            {"_id": oid},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.warning("release_missing_product", product_id=str(product_id), quantity=quantity)
        else:
            logger.debug("stock_released", product_id=str(product_id), quantity=quantity, stock=doc["stock"])
        return doc

    def set_stock(self, product_id: str, stock: int) -> Dict[str, Any]:
        if not isinstance(stock, int) or isinstance(stock, bool) or stock < 0:
            raise InvalidRequest("Stock must be a non-negative integer")
        oid = parse_object_id(product_id)
        doc = None
        if oid is not None:
            doc = self._products.find_one_and_update(
                {"_id": oid},
                {"$set": {"stock": stock, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFound("Product", str(product_id))
        logger.info("stock_set", product_id=str(product_id), stock=stock)
        return doc

    def add_review(self, product_id: str, user_id: str, rating: int, comment: str) -> Dict[str, Any]:
        """Append a review (one per user) and refresh the rating summary."""
        product = self.get(product_id)
        review = {"user_id": user_id, "rating": rating, "comment": comment, "created_at": utcnow()}

        pushed = self._products.find_one_and_update(
            {"_id": product["_id"], "reviews.user_id": {"$ne": user_id}},
            {"$push": {"reviews": review}},
            return_document=ReturnDocument.AFTER,
        )
        if pushed is None:
            raise InvalidRequest("Product already reviewed")

        reviews = pushed.get("reviews", [])
        ratings = {
            "count": len(reviews),
            "average": round(sum(r["rating"] for r in reviews) / len(reviews), 2),
        }
        return self._products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": {"ratings": ratings, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

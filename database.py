"""
MongoDB access.

The client is created from ``Settings`` by ``connect`` and stored on the app;
routes receive the database through the ``get_db`` dependency so tests can
swap it out.
"""
import logging
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, Request
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, TEXT, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

logger = logging.getLogger(__name__)

USERS = "user"
PRODUCTS = "product"

# Fields never sent back to clients
PRIVATE_USER_FIELDS = ("password_hash",)
PRIVATE_VERIFICATION_FIELDS = (
    "email_verification_token",
    "email_verification_expires",
    "password_reset_token",
    "password_reset_expires",
)


def connect(settings: Settings) -> Optional[Database]:
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; database features are unavailable")
        return None
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        tz_aware=True,
    )
    return client[settings.database_name]


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(db: Database) -> None:
    users = db[USERS]
    users.create_index([("email", ASCENDING)], unique=True)
    users.create_index([("role", ASCENDING)])
    users.create_index([("stats.rating", DESCENDING)])
    users.create_index([("created_at", DESCENDING)])

    products = db[PRODUCTS]
    products.create_index([("name", TEXT), ("description", TEXT), ("brand", TEXT)])
    products.create_index([("location.point", GEOSPHERE)])
    products.create_index([("created_by", ASCENDING)])
    products.create_index([("category", ASCENDING), ("subcategory", ASCENDING)])
    products.create_index([("price", ASCENDING)])
    products.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    products.create_index([("ratings.average", DESCENDING)])
    products.create_index([("inventory.quantity", ASCENDING)])
    products.create_index([("inventory.sku", ASCENDING)], unique=True, sparse=True)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}", errors=[{"field": label, "message": "not a valid id"}])


def serialize_doc(value: Any) -> Any:
    """Make a MongoDB document JSON friendly: ``_id`` becomes ``id`` and ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        doc = {k: serialize_doc(v) for k, v in value.items()}
        if "_id" in doc:
            doc["id"] = doc.pop("_id")
        return doc
    return value


def public_user(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    user = serialize_doc(doc)
    for field in PRIVATE_USER_FIELDS:
        user.pop(field, None)
    verification = user.get("verification")
    if isinstance(verification, dict):
        for field in PRIVATE_VERIFICATION_FIELDS:
            verification.pop(field, None)
    return user

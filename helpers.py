import math
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EARTH_RADIUS_KM = 6371

SKU_ALPHABET = string.ascii_uppercase + string.digits


def generate_sku() -> str:
    """Return ``SKU-<epoch millis>-<9 random base36 chars>``."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(SKU_ALPHABET) for _ in range(9))
    return f"SKU-{timestamp}-{suffix}"


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sanitize_input(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.strip().replace("<", "").replace(">", "")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes unless the client is tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def flatten_update(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Turn a nested partial document into dotted ``$set`` keys so that sibling
    fields already stored are left alone.

    >>> flatten_update({"inventory": {"quantity": 3}})
    {'inventory.quantity': 3}
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            flat.update(flatten_update(value, path))
        else:
            flat[path] = value
    return flat

# app/utils.py
from typing import Any, Dict, Optional
import math
import re
from bson import ObjectId
from datetime import datetime

from .errors import ValidationError

_HASH_RE = re.compile(r"^[0-9a-fA-F]{16,128}$")


def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    También convierte datetime a ISO format strings.
    Si doc es None, devuelve {}.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, datetime):
            d[key] = value.isoformat()
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else item.isoformat() if isinstance(item, datetime)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d

# ==================== Geolocalización ====================

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calcula la distancia en kilómetros entre dos puntos usando la fórmula de Haversine.
    """
    R = 6371  # Radio de la Tierra en kilómetros

    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(math.sqrt(a))

    return R * c

def is_within_radius(
    center_lat: float,
    center_lng: float,
    point_lat: float,
    point_lng: float,
    radius_km: float
) -> bool:
    """Verifica si un punto está dentro de un radio dado"""
    distance = haversine_distance(center_lat, center_lng, point_lat, point_lng)
    return distance <= radius_km

# ==================== Utilidades de Base de Datos ====================

def to_object_id(value: str, field_name: str = "id") -> ObjectId:
    """
    Convierte un string a ObjectId con validación.
    Centraliza la lógica de conversión para evitar duplicación.
    """
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {field_name}: {value}")
    return ObjectId(value)

def validate_image_hashes(images: Optional[list[str]]) -> list[str]:
    """Las imágenes de una valoración se referencian por hash de contenido (hex)."""
    out: list[str] = []
    for h in images or []:
        if not isinstance(h, str) or not _HASH_RE.match(h):
            raise ValidationError(f"Hash de imagen inválido: {h!r}")
        out.append(h.lower())
    return out

def version_filter(version: int) -> Dict[str, Any] | int:
    """Filtro sobre un contador de versión; los documentos sin escribir aún no tienen el campo."""
    return {"$exists": False} if not version else version

# app/presence/tools/geo_validator.py

import math

from ..models.redis_models import Coordinate

EARTH_RADIUS_METERS = 6371000


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """
    İki koordinat arasındaki büyük daire mesafesini (haversine) metre cinsinden hesaplar.

    Koordinatlar derece cinsindendir. Aralık kontrolü `Coordinate` modeli tarafından
    yapılır; bu fonksiyon saf bir sayısal hesaplamadır.
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_METERS * c


def within_geofence(point: Coordinate, center: Coordinate, radius_meters: float) -> bool:
    """Nokta tam sınırdaysa (mesafe == yarıçap) içeride kabul edilir."""
    return distance_meters(point, center) <= radius_meters

# dugsi/geolocation.py

"""
Geofence checks for teacher check-in.

The center location comes from settings.IRSHAD_CENTER_LAT / LNG. A 0/0
center means the location has not been configured.
"""

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import math
import logging

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3
GEOFENCE_RADIUS_METERS = 50


def get_center_location():
    return (
        float(getattr(settings, 'IRSHAD_CENTER_LAT', 0) or 0),
        float(getattr(settings, 'IRSHAD_CENTER_LNG', 0) or 0),
    )


def is_center_configured():
    return get_center_location() != (0.0, 0.0)


def calculate_distance(lat1, lng1, lat2, lng2):
    """Haversine distance in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def is_within_radius(lat, lng, center_lat, center_lng, radius_meters=GEOFENCE_RADIUS_METERS):
    return calculate_distance(lat, lng, center_lat, center_lng) <= radius_meters


def is_within_geofence(lat, lng):
    """True when (lat, lng) is within 50 m of the center"""
    if lat is None or lng is None:
        return False

    if not is_center_configured():
        logger.warning("IRSHAD_CENTER_LAT and IRSHAD_CENTER_LNG are not set; geofence check fails")
        return False

    center_lat, center_lng = get_center_location()
    return is_within_radius(lat, lng, center_lat, center_lng)


def validate_center_location_config():
    if not is_center_configured():
        raise ImproperlyConfigured(
            "Teacher check-in requires IRSHAD_CENTER_LAT and IRSHAD_CENTER_LNG to be set"
        )

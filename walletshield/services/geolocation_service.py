import ipaddress
import math
import logging
from typing import Dict, Optional, List

import requests

from walletshield.config import settings
from walletshield.models.constant import utcnow

logger = logging.getLogger(__name__)

LOCAL_LOCATION = {"country": "Local", "city": "Local", "latitude": None, "longitude": None}
UNKNOWN_LOCATION = {"country": "Unknown", "city": "Unknown", "latitude": None, "longitude": None}


def haversine(lat1, lon1, lat2, lon2):
    """Calculate the great circle distance between two points on earth"""
    R = 6371  # Earth's radius in kilometers
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2 +
        math.cos(math.radians(lat1)) *
        math.cos(math.radians(lat2)) *
        math.sin(dlon / 2) ** 2
    )
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def get_client_ip(request) -> str:
    """
    Extract the real client IP, honouring the headers load balancers and CDNs add
    """
    forwarded_for = request.headers.get('X-Forwarded-For')
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, first one is the client
        return forwarded_for.split(',')[0].strip()
    client_ip = (request.headers.get('X-Real-IP') or
                 request.headers.get('CF-Connecting-IP') or  # Cloudflare
                 request.headers.get('True-Client-IP'))      # Akamai
    if client_ip:
        return client_ip.strip()
    if request.client is not None:
        return request.client.host
    return "127.0.0.1"


def parse_ip(ip: Optional[str]):
    if not ip:
        return None
    try:
        return ipaddress.ip_address(ip.strip())
    except ValueError:
        return None


def is_local_ip(ip: Optional[str]) -> bool:
    """Private, loopback, link-local and unspecified addresses have no geography."""
    addr = parse_ip(ip)
    if addr is None:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_unspecified


def get_location_from_ip(ip: Optional[str]) -> Dict[str, Optional[object]]:
    """
    Resolve an IP to {country, city, latitude, longitude}. Never raises.
    """
    if parse_ip(ip) is None:
        logger.warning(f"Not a valid IP address, skipping lookup: {ip!r}")
        return dict(UNKNOWN_LOCATION)
    if is_local_ip(ip):
        return dict(LOCAL_LOCATION)

    try:
        response = requests.get(settings.IP_LOOKUP_URL.format(ip=ip), timeout=settings.IP_LOOKUP_TIMEOUT)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            logger.warning(f"IP lookup returned an error for {ip}: {data.get('reason')}")
            return dict(UNKNOWN_LOCATION)

        location_data = {
            "country": data.get("country_name") or "Unknown",
            "city": data.get("city") or "Unknown",
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
        }
        logger.info(f"Successfully retrieved location data: IP={ip}, Country={location_data['country']}")
        return location_data
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Error fetching location data for {ip}: {e}")
        return dict(UNKNOWN_LOCATION)


def get_last_known_location(db, user_id: int):
    """Most recent verdict for the user that carries coordinates."""
    from walletshield.models.verdict import Verdict

    query = db.query(Verdict).filter(
        Verdict.user_id == user_id,
        Verdict.latitude.isnot(None),
        Verdict.longitude.isnot(None),
    )
    return query.order_by(Verdict.created_at.desc(), Verdict.id.desc()).first()


def evaluate_travel(current: Dict, previous: Optional[Dict], now=None) -> Dict:
    """
    Compare the current location with the previous one.

    `previous` needs latitude, longitude, city, country and created_at.
    A missing previous location or coordinates on either side is never suspicious.
    """
    now = now or utcnow()
    result = {
        "location_changed": False,
        "suspicious": False,
        "distance": 0.0,
        "time_diff_hours": None,
        "speed": None,
        "previous_location": None,
        "message": "First transaction from this location" if previous is None else "Same location",
    }
    if previous is None:
        return result
    if current.get("latitude") is None or current.get("longitude") is None:
        result["message"] = "Current location unavailable"
        return result

    distance = haversine(previous["latitude"], previous["longitude"],
                         current["latitude"], current["longitude"])
    elapsed_hours = max((now - previous["created_at"]).total_seconds() / 3600, 0)
    speed = distance / elapsed_hours if elapsed_hours > 0 else 0.0

    location_changed = distance > settings.LOCATION_CHANGE_KM
    suspicious = speed > settings.IMPOSSIBLE_SPEED_KMH or (
        distance > settings.LONG_JUMP_KM and elapsed_hours < 1
    )

    previous_label = f"{previous.get('city')}, {previous.get('country')}"
    current_label = f"{current.get('city')}, {current.get('country')}"
    if suspicious:
        message = (f"Impossible travel detected: {round(distance)}km in "
                   f"{elapsed_hours:.1f} hours ({previous_label} -> {current_label})")
    elif location_changed:
        message = f"Location changed: {previous_label} -> {current_label}"
    else:
        message = "Same location"

    result.update({
        "location_changed": location_changed,
        "suspicious": suspicious,
        "distance": round(distance, 2),
        "time_diff_hours": round(elapsed_hours, 2),
        "speed": round(speed, 2),
        "previous_location": {
            "city": previous.get("city"),
            "country": previous.get("country"),
            "timestamp": previous["created_at"].isoformat(),
        },
        "message": message,
    })
    return result


def check_location_change(db, user_id: int, ip_address: Optional[str], location: Optional[Dict] = None, now=None) -> Dict:
    """
    Geo-velocity check for one request. Returns the current location merged with
    the travel evaluation against the user's last checked-in location.
    """
    location = location if location is not None else get_location_from_ip(ip_address)
    last = get_last_known_location(db, user_id)
    previous = None
    if last is not None:
        previous = {
            "latitude": last.latitude,
            "longitude": last.longitude,
            "city": last.city,
            "country": last.country,
            "created_at": last.created_at,
        }

    travel = evaluate_travel(location, previous, now=now)
    if travel["suspicious"]:
        logger.warning(f"User {user_id}: {travel['message']}")
    return {**location, "ip_address": ip_address, **travel}


def get_user_location_history(db, user_id: int, limit: Optional[int] = None) -> List[Dict]:
    from walletshield.models.verdict import Verdict

    limit = limit or settings.LOCATION_HISTORY_LIMIT
    rows = (
        db.query(Verdict)
        .filter(Verdict.user_id == user_id, Verdict.ip_address.isnot(None))
        .order_by(Verdict.created_at.desc(), Verdict.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "ip_address": row.ip_address,
            "country": row.country,
            "city": row.city,
            "latitude": row.latitude,
            "longitude": row.longitude,
            "location_changed": bool(row.location_changed),
            "location_suspicious": bool(row.location_suspicious),
            "created_at": row.created_at,
        }
        for row in rows
    ]

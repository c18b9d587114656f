"""
Address Resolver
================

Turns the delivery address the agent typed (or a pasted map link) into a
GeocodeResult via the geocoding collaborator.

- Input shorter than ADDRESS_MIN_LENGTH is rejected without a service call.
- Map links: coordinates are read from the URL (@lat,lng / q= / query= / ll=)
  and sent as a "lat,lng" query.
- Plain text that does not name the configured city gets the city hint
  appended so results stay local.
"""
import asyncio
import re
from typing import Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

import config
from .draft_order import GeocodeResult
from .errors import AddressValidationError, CollaboratorError, GeocodeError
from utils.logger import get_logger

logger = get_logger()

_COORD_PAIR = re.compile(r"(-?\d{1,2}(?:\.\d+)?)\s*,\s*(-?\d{1,3}(?:\.\d+)?)")
_AT_COORDS = re.compile(r"@(-?\d{1,2}\.\d+),(-?\d{1,3}\.\d+)")


def _valid_pair(lat: float, lng: float) -> bool:
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def extract_coordinates(url: str) -> Optional[Tuple[float, float]]:
    """
    Pull a lat/lng pair out of a map link.

    Returns:
        (lat, lng) or None when the link carries no coordinates
    """
    decoded = unquote(url)

    match = _AT_COORDS.search(decoded)
    if match:
        lat, lng = float(match.group(1)), float(match.group(2))
        if _valid_pair(lat, lng):
            return lat, lng

    params = parse_qs(urlparse(decoded).query)
    for key in ('q', 'query', 'll', 'destination'):
        for value in params.get(key, []):
            pair = _COORD_PAIR.fullmatch(value.strip())
            if pair:
                lat, lng = float(pair.group(1)), float(pair.group(2))
                if _valid_pair(lat, lng):
                    return lat, lng
    return None


def apply_city_hint(text: str, hint: str = None) -> str:
    hint = config.GEOCODE_CITY_HINT if hint is None else hint
    if not hint:
        return text
    city = hint.split(',')[0].strip().lower()
    if city and city in text.lower():
        return text
    return f"{text}, {hint}"


def build_query(text: str) -> str:
    """
    Validate raw address input and turn it into a geocoder query

    Raises:
        AddressValidationError: too short, or a map link without coordinates
    """
    cleaned = (text or '').strip()
    if len(cleaned) < config.ADDRESS_MIN_LENGTH:
        raise AddressValidationError(
            f"Address is too short (at least {config.ADDRESS_MIN_LENGTH} characters)"
        )

    if re.match(r"^https?://", cleaned, re.IGNORECASE):
        coords = extract_coordinates(cleaned)
        if coords is None:
            raise AddressValidationError("Map link has no coordinates; paste the address text instead")
        return f"{coords[0]},{coords[1]}"

    return apply_city_hint(cleaned)


class AddressResolver:
    """Wraps the geocoding collaborator"""

    def __init__(self, geocoder):
        self.geocoder = geocoder

    async def resolve(self, text: str) -> GeocodeResult:
        query = build_query(text)
        logger.info(f"Geocoding '{query}'", component="AddressResolver")

        try:
            result = await asyncio.to_thread(self.geocoder.geocode, query)
        except GeocodeError:
            raise
        except CollaboratorError as e:
            raise GeocodeError(str(e), status_code=e.status_code)
        except Exception as e:
            raise GeocodeError(f"Geocoding failed: {e}")

        if result is None:
            raise GeocodeError("No match found for this address")
        return result

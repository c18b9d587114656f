"""
Collaborator Clients
====================

Blocking clients for the services the workflow depends on. The controller
runs every call through asyncio.to_thread, so these stay plain `requests`
code.

Contracts (duck-typed):
- interpreter.interpret(text) -> dict
- catalog.search(query, limit) -> List[ProductCandidate]
- geocoder.geocode(query) -> Optional[GeocodeResult]
- persistence.submit(payload) -> order number (str)
- image_store.store(data, filename) -> reference (str)
- identity.fetch_seller_name() -> str

build_services() wires the configured implementations together.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

import config
from .draft_order import GeocodeResult, ProductCandidate
from .errors import (
    CatalogSearchError,
    CollaboratorError,
    GeocodeError,
    IdentityError,
    InterpretationError,
    SubmissionRejected,
)


def _json_or_none(response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(body: Any, fallback: str) -> str:
    """Pick the server's own words when it sent any"""
    if isinstance(body, dict):
        for key in ('details', 'error', 'message'):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


class _HttpService:
    """Shared session, base URL and auth header for the intake backend"""

    def __init__(self, base_url: str = None, token: str = None, timeout: float = None, session=None):
        self.base_url = (base_url or config.INTAKE_API_BASE_URL).rstrip('/')
        self.token = token if token is not None else config.INTAKE_API_TOKEN
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        return headers


class HttpInterpreterService(_HttpService):
    """POST {text} to the interpret endpoint"""

    def interpret(self, text: str) -> Dict:
        try:
            response = self.session.post(
                self._url(config.INTERPRET_ENDPOINT),
                json={'text': text},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise InterpretationError(f"Interpreter unreachable: {e}")

        body = _json_or_none(response)
        if response.status_code == 429:
            raise InterpretationError("Interpreter quota exhausted, try again later", status_code=429)
        if not response.ok:
            raise InterpretationError(
                _error_message(body, f"Interpreter failed ({response.status_code})"),
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            raise InterpretationError("Interpreter returned an unreadable response")
        return body


def map_search_response(body: Any) -> List[ProductCandidate]:
    """
    Accept {results: [...]}, {items: [...]} or a bare list.

    Rows without a usable name are dropped.
    """
    rows = body
    if isinstance(body, dict):
        rows = body.get('results') or body.get('items') or []
    if not isinstance(rows, list):
        return []

    candidates = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        name = str(row.get('name') or row.get('product_name') or row.get('title') or '').strip()
        if not name:
            continue
        code = row.get('code') or row.get('sku') or row.get('id') or ''
        image_url = row.get('image_url') or row.get('imageUrl') or row.get('thumbnail') or None
        candidates.append(ProductCandidate(name=name, code=str(code), image_url=image_url))
    return candidates


class HttpCatalogService(_HttpService):
    """GET the product search endpoint"""

    def search(self, query: str, limit: int = None) -> List[ProductCandidate]:
        limit = min(limit or config.CATALOG_SEARCH_LIMIT, config.CATALOG_SEARCH_MAX_LIMIT)
        try:
            response = self.session.get(
                self._url(config.CATALOG_SEARCH_ENDPOINT),
                params={'q': query, 'limit': limit},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CatalogSearchError(f"Catalog unreachable: {e}")

        body = _json_or_none(response)
        if not response.ok:
            raise CatalogSearchError(
                _error_message(body, f"Catalog search failed ({response.status_code})"),
                status_code=response.status_code,
            )
        return map_search_response(body)


class HttpOrderPersistence(_HttpService):
    """POST the finalized order; returns the backend's order number"""

    def submit(self, payload: Dict) -> str:
        try:
            response = self.session.post(
                self._url(config.ORDERS_ENDPOINT),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CollaboratorError(f"Order service unreachable: {e}", service="persistence")

        body = _json_or_none(response)
        if not response.ok:
            field_errors = {}
            if isinstance(body, dict):
                field_errors = body.get('field_errors') or body.get('errors') or {}
            raise SubmissionRejected(
                _error_message(body, f"server rejected ({response.status_code})"),
                status_code=response.status_code,
                field_errors=field_errors,
            )

        order_number = None
        if isinstance(body, dict):
            for key in ('order_number', 'orderNumber', 'order_no', 'id'):
                if body.get(key) not in (None, ''):
                    order_number = str(body[key])
                    break
        if not order_number:
            raise CollaboratorError(
                "Order service returned a malformed response (no order number)",
                service="persistence",
                status_code=response.status_code,
            )
        return order_number


class HttpIdentityService(_HttpService):
    """Who is the current seller"""

    def fetch_seller_name(self) -> str:
        try:
            response = self.session.get(
                self._url(config.IDENTITY_ENDPOINT),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IdentityError(f"Identity service unreachable: {e}")

        body = _json_or_none(response)
        if not response.ok or not isinstance(body, dict) or body.get('ok') is False:
            raise IdentityError(
                _error_message(body, "Invalid session"),
                status_code=response.status_code,
            )
        name = str(body.get('full_name') or body.get('name') or '').strip()
        if not name:
            raise IdentityError("Identity service returned no seller name")
        return name


def parse_geocode_response(body: Any) -> Optional[GeocodeResult]:
    """
    First match from an OpenCage, Nominatim or flat {formattedAddress, lat, lng} body.

    Returns None when there is no match.
    """
    if isinstance(body, list):
        # Nominatim: [{display_name, lat, lon}]
        if not body or not isinstance(body[0], dict):
            return None
        first = body[0]
        return GeocodeResult(
            formatted_address=first.get('display_name', ''),
            lat=float(first['lat']),
            lng=float(first['lon']),
        )

    if not isinstance(body, dict):
        return None

    results = body.get('results')
    if isinstance(results, list):
        if not results:
            return None
        first = results[0]
        geometry = first.get('geometry') or {}
        return GeocodeResult(
            formatted_address=first.get('formatted', ''),
            lat=float(geometry['lat']),
            lng=float(geometry['lng']),
        )

    formatted = body.get('formatted') or body.get('formattedAddress') or body.get('formatted_address')
    if formatted and body.get('lat') is not None and body.get('lng') is not None:
        return GeocodeResult(formatted_address=formatted, lat=float(body['lat']), lng=float(body['lng']))
    return None


class OpenCageGeocoder:
    """OpenCage forward geocoding, biased to the configured country"""

    def __init__(self, api_key: str = None, timeout: float = None, session=None):
        self.api_key = api_key or config.OPENCAGE_API_KEY
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def geocode(self, query: str) -> Optional[GeocodeResult]:
        if not self.api_key:
            raise GeocodeError("Geocoding is not configured (OPENCAGE_API_KEY missing)")
        try:
            response = self.session.get(
                config.OPENCAGE_URL,
                params={
                    'q': query,
                    'key': self.api_key,
                    'countrycode': config.GEOCODE_COUNTRY_CODE,
                    'language': config.GEOCODE_LANGUAGE,
                    'limit': 1,
                    'no_annotations': 1,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GeocodeError(f"Geocoder unreachable: {e}")

        body = _json_or_none(response)
        if not response.ok:
            status = body.get('status', {}) if isinstance(body, dict) else {}
            raise GeocodeError(
                status.get('message') or f"Geocoder failed ({response.status_code})",
                status_code=response.status_code,
            )
        try:
            return parse_geocode_response(body)
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodeError(f"Geocoder returned an unreadable response: {e}")


class NominatimGeocoder:
    """OpenStreetMap Nominatim search"""

    def __init__(self, timeout: float = None, session=None):
        self.timeout = timeout or config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def geocode(self, query: str) -> Optional[GeocodeResult]:
        try:
            response = self.session.get(
                config.NOMINATIM_URL,
                params={
                    'q': query,
                    'format': 'json',
                    'limit': 1,
                    'countrycodes': config.GEOCODE_COUNTRY_CODE,
                    'accept-language': config.GEOCODE_LANGUAGE,
                },
                headers={'User-Agent': config.NOMINATIM_USER_AGENT},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GeocodeError(f"Geocoder unreachable: {e}")

        if not response.ok:
            raise GeocodeError(f"Geocoder failed ({response.status_code})", status_code=response.status_code)
        try:
            return parse_geocode_response(_json_or_none(response))
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodeError(f"Geocoder returned an unreadable response: {e}")


@dataclass
class IntakeServices:
    """Everything the WorkflowController talks to"""
    interpreter: Any
    catalog: Any
    geocoder: Any
    persistence: Any
    image_store: Any
    identity: Any


def build_services() -> IntakeServices:
    """Instantiate the collaborators selected in config"""
    config.validate_config()

    if config.INTERPRETER_SOURCE == 'gemini':
        from .gemini_interpreter import GeminiInterpreterService
        interpreter = GeminiInterpreterService()
    else:
        interpreter = HttpInterpreterService()

    if config.CATALOG_SOURCE == 'google_sheet':
        from .sheets_store import PriceListCatalog
        catalog = PriceListCatalog()
    else:
        catalog = HttpCatalogService()

    if config.ORDER_BACKEND == 'google_sheet':
        from .sheets_store import SheetsOrderPersistence
        persistence = SheetsOrderPersistence()
    else:
        persistence = HttpOrderPersistence()

    if config.GEOCODER_PROVIDER == 'nominatim':
        geocoder = NominatimGeocoder()
    else:
        geocoder = OpenCageGeocoder()

    from .image_store import LocalImageStore

    return IntakeServices(
        interpreter=interpreter,
        catalog=catalog,
        geocoder=geocoder,
        persistence=persistence,
        image_store=LocalImageStore(),
        identity=HttpIdentityService(),
    )

"""
Draft Order Model
Data classes for the in-memory order under construction
"""
import copy
import math
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

import config
from .phone import normalize_phone


class RecognitionStatus(Enum):
    """Whether a line item's product has been matched against the catalog"""
    CONFIRMED = 'confirmed'    # candidate explicitly accepted
    AMBIGUOUS = 'ambiguous'    # catalog returned candidates, none accepted yet
    UNKNOWN = 'unknown'        # not checked yet, or checked with no match


class SaleType(Enum):
    RETAIL = 'RETAIL'
    WHOLESALE = 'WHOLESALE'


class PaymentMethod(Enum):
    CASH = 'CASH'
    QR = 'QR'
    TRANSFER = 'TRANSFER'


@dataclass(frozen=True)
class ProductCandidate:
    """Catalog product offered as a match for a line item"""
    name: str
    code: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class GeocodeResult:
    formatted_address: str
    lat: float
    lng: float


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass
class PaymentEntry:
    method: PaymentMethod
    amount: float


def parse_amount(value) -> Optional[float]:
    """Number from user or service input; accepts '12,50' style decimals"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    text = str(value).strip().replace(' ', '')
    if not text:
        return None
    if ',' in text and '.' not in text:
        text = text.replace(',', '.')
    else:
        text = text.replace(',', '')
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _new_line_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class LineItem:
    """
    One product entry within a draft order.

    recognition_status is CONFIRMED only while product_code holds the code of
    an explicitly accepted candidate; rename() breaks that link.
    """
    product_name: str = ""
    quantity: int = 0
    unit_price: float = 0.0
    product_code: Optional[str] = None
    sale_type: Optional[SaleType] = None
    image_reference: Optional[str] = None
    recognition_status: RecognitionStatus = RecognitionStatus.UNKNOWN
    candidates: List[ProductCandidate] = field(default_factory=list)
    original_name: Optional[str] = None
    line_id: str = field(default_factory=_new_line_id)

    def rename(self, text: str):
        """Replace the free-text name; a confirmed match must be re-confirmed"""
        self.product_name = text
        if self.recognition_status is RecognitionStatus.CONFIRMED or self.product_code is not None:
            self.product_code = None
            self.recognition_status = RecognitionStatus.UNKNOWN

    def accept_candidate(self, candidate: ProductCandidate):
        self.product_code = candidate.code
        self.product_name = candidate.name
        self.recognition_status = RecognitionStatus.CONFIRMED
        self.candidates = []

    def offer_candidates(self, candidates: List[ProductCandidate]):
        """Show search results; a confirmed line keeps its status"""
        if self.recognition_status is RecognitionStatus.CONFIRMED:
            return
        self.candidates = list(candidates)
        self.recognition_status = (
            RecognitionStatus.AMBIGUOUS if self.candidates else RecognitionStatus.UNKNOWN
        )

    @property
    def line_total(self) -> float:
        return (self.quantity or 0) * (self.unit_price or 0.0)

    @property
    def is_recognized(self) -> Optional[bool]:
        """Legacy flag expected by the orders backend: True / False / None"""
        if self.recognition_status is RecognitionStatus.CONFIRMED:
            return True
        if self.recognition_status is RecognitionStatus.AMBIGUOUS:
            return False
        return None


def _default_window() -> Tuple[str, str]:
    now = datetime.now()
    end = now + timedelta(hours=config.DEFAULT_WINDOW_HOURS)
    return now.strftime('%H:%M'), end.strftime('%H:%M')


@dataclass
class DeliveryInfo:
    raw_address_text: str = ""
    normalized_address: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    destination_label: str = ""
    is_parcel_shipment: bool = False
    delivery_date: str = field(default_factory=lambda: datetime.now().strftime('%Y-%m-%d'))
    window_start: str = field(default_factory=lambda: _default_window()[0])
    window_end: str = field(default_factory=lambda: _default_window()[1])
    notes: str = ""

    def apply_geocode(self, result: GeocodeResult):
        self.normalized_address = result.formatted_address
        self.coordinates = Coordinates(lat=result.lat, lng=result.lng)


@dataclass
class CustomerInfo:
    name: str = ""
    national_id: str = ""
    phone: str = ""


def _plain(value):
    """Convert enums inside asdict() output to their values"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class DraftOrder:
    """Single-session order under construction, stages 1 to 5"""

    FIRST_STAGE = 1
    LAST_STAGE = 5

    def __init__(self, seller_name: str, seller_bound: bool = False):
        """
        Create an empty draft

        Args:
            seller_name: Display name of the seller (placeholder until identity resolves)
            seller_bound: True once the name came from the identity service
        """
        self._seller_name = seller_name
        self._seller_bound = seller_bound
        self.items: List[LineItem] = []
        self.delivery = DeliveryInfo()
        self.customer = CustomerInfo()
        self.payments: List[PaymentEntry] = []
        self.stage = self.FIRST_STAGE
        self.created_at = datetime.now()

    @classmethod
    def fresh(cls, seller_name: str, seller_bound: bool = False) -> "DraftOrder":
        return cls(seller_name, seller_bound=seller_bound)

    @property
    def seller_name(self) -> str:
        return self._seller_name

    @property
    def seller_bound(self) -> bool:
        return self._seller_bound

    def bind_seller(self, name: str):
        """Merge in the identity service's answer; allowed exactly once"""
        if self._seller_bound:
            raise ValueError("Seller identity already set for this session")
        self._seller_name = name
        self._seller_bound = True

    def find_line(self, line_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.line_id == line_id:
                return item
        return None

    def items_total(self) -> float:
        return sum(item.line_total for item in self.items)

    def payments_total(self) -> float:
        return sum(p.amount or 0.0 for p in self.payments)

    def snapshot(self) -> Dict:
        """Deep, JSON-compatible copy of everything the user has entered"""
        return copy.deepcopy({
            'items': [_plain(asdict(item)) for item in self.items],
            'delivery': _plain(asdict(self.delivery)),
            'customer': asdict(self.customer),
            'payments': [_plain(asdict(p)) for p in self.payments],
        })


def _sale_type_label(sale_type: Optional[SaleType]) -> Optional[str]:
    if sale_type is SaleType.WHOLESALE:
        return 'mayor'
    if sale_type is SaleType.RETAIL:
        return 'unidad'
    return None


def build_payload(draft: DraftOrder) -> Dict:
    """
    Serialize a draft for the order persistence service.

    Reads only; the draft is never modified.
    """
    items = draft.items
    all_wholesale = bool(items) and all(i.sale_type is SaleType.WHOLESALE for i in items)
    payment = draft.payments[0] if draft.payments else None
    delivery = draft.delivery
    coords = delivery.coordinates

    return {
        'seller': draft.seller_name,
        'sale_type': 'mayor' if all_wholesale else 'unidad',
        'destination': delivery.destination_label.strip(),
        'is_parcel': delivery.is_parcel_shipment,
        'address': delivery.normalized_address or delivery.raw_address_text.strip(),
        'lat': coords.lat if coords else None,
        'lng': coords.lng if coords else None,
        'customer_id': draft.customer.national_id.strip(),
        'customer_name': draft.customer.name.strip(),
        'customer_phone': normalize_phone(draft.customer.phone),
        'payment_method': payment.method.value if payment else None,
        'payment_amount': round(payment.amount, 2) if payment else None,
        'notes': delivery.notes.strip() or None,
        'delivery_date': delivery.delivery_date,
        'delivery_from': delivery.window_start,
        'delivery_to': delivery.window_end,
        'total_amount': round(draft.items_total(), 2),
        'items': [
            {
                'product_code': item.product_code,
                'product_name': item.product_name.strip(),
                'quantity': item.quantity,
                'unit_price': round(item.unit_price, 2),
                'line_total': round(item.line_total, 2),
                'sale_type': _sale_type_label(item.sale_type),
                'image_url': item.image_reference,
                'original_name': item.original_name,
                'is_recognized': item.is_recognized,
            }
            for item in items
        ],
    }

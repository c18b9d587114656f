"""
Order Interpreter
=================

One-shot conversion of a pasted order message into draft line items plus
best-effort customer / payment hints.

The interpreter is not trusted: every item it returns is re-validated here
and starts unconfirmed (AMBIGUOUS when it came with catalog candidates,
UNKNOWN otherwise). Nothing in this module touches a DraftOrder.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .draft_order import LineItem, RecognitionStatus, SaleType, parse_amount
from .errors import CollaboratorError, InterpretationError
from .phone import normalize_phone
from .services import map_search_response
from utils.logger import get_logger

logger = get_logger()

_SALE_TYPE_ALIASES = {
    'WHOLESALE': SaleType.WHOLESALE,
    'MAYOR': SaleType.WHOLESALE,
    'MAYORISTA': SaleType.WHOLESALE,
    'RETAIL': SaleType.RETAIL,
    'UNIDAD': SaleType.RETAIL,
    'MINORISTA': SaleType.RETAIL,
}


@dataclass
class InterpretationResult:
    items: List[LineItem]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    payment_amount: Optional[float] = None
    dropped_count: int = 0
    warnings: List[str] = field(default_factory=list)


def _first(data: Dict, *keys) -> Any:
    for key in keys:
        if data.get(key) not in (None, ''):
            return data[key]
    return None


def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_sale_type(value) -> Optional[SaleType]:
    if not value:
        return None
    return _SALE_TYPE_ALIASES.get(str(value).strip().upper())


def build_line_item(raw: Dict, warnings: Optional[List[str]] = None) -> Optional[LineItem]:
    """
    Re-validate one interpreter item.

    A fractional quantity is truncated and reported through warnings.

    Returns:
        LineItem, or None when the item has no usable name
    """
    if not isinstance(raw, dict):
        return None
    name = _clean_text(_first(raw, 'name', 'product_name'))
    if not name:
        return None

    quantity = parse_amount(raw.get('quantity'))
    if quantity is None or quantity < 1:
        quantity = 1
    elif not quantity.is_integer():
        if warnings is not None:
            warnings.append(f"'{name}': quantity {quantity:g} is not a whole number, using {int(quantity)}")
        quantity = int(quantity)
    else:
        quantity = int(quantity)

    price = parse_amount(_first(raw, 'unitPrice', 'unit_price', 'price'))
    price = max(0.0, price) if price is not None else 0.0

    item = LineItem(
        product_name=name,
        quantity=quantity,
        unit_price=price,
        sale_type=_parse_sale_type(_first(raw, 'saleType', 'sale_type')),
        original_name=name,
    )

    candidates = map_search_response(_first(raw, 'candidates', 'similar_options') or [])
    item.candidates = candidates
    item.recognition_status = (
        RecognitionStatus.AMBIGUOUS if candidates else RecognitionStatus.UNKNOWN
    )
    return item


def parse_interpretation(raw: Dict) -> InterpretationResult:
    if not isinstance(raw, dict):
        raise InterpretationError("Interpreter returned an unreadable response")

    raw_items = raw.get('items')
    if not isinstance(raw_items, list):
        raise InterpretationError("Interpreter returned no item list")

    warnings = []
    items = [item for item in (build_line_item(r, warnings) for r in raw_items) if item is not None]
    dropped = len(raw_items) - len(items)
    if not items:
        raise InterpretationError("No valid products could be extracted from the text")

    result = InterpretationResult(items=items, dropped_count=dropped, warnings=warnings)
    if dropped:
        result.warnings.append(f"{dropped} unreadable item(s) were skipped")

    result.customer_name = _clean_text(_first(raw, 'customerName', 'customer_name'))
    phone = _clean_text(_first(raw, 'customerPhone', 'customer_phone'))
    result.customer_phone = normalize_phone(phone) if phone else None
    result.notes = _clean_text(raw.get('notes'))

    amount = parse_amount(_first(raw, 'paymentAmount', 'payment_amount'))
    result.payment_amount = amount if amount and amount > 0 else None
    return result


class OrderInterpreter:
    """Wraps the interpreter collaborator"""

    def __init__(self, service):
        self.service = service

    async def interpret(self, text: str) -> InterpretationResult:
        """
        Interpret a pasted order

        Raises:
            InterpretationError: blank input, service failure, or nothing usable
        """
        if not (text or '').strip():
            raise InterpretationError("Paste the order text first")

        logger.info(f"Interpreting {len(text)} chars of order text", component="Interpreter")
        try:
            raw = await asyncio.to_thread(self.service.interpret, text)
        except InterpretationError:
            raise
        except CollaboratorError as e:
            raise InterpretationError(str(e), status_code=e.status_code)
        except Exception as e:
            raise InterpretationError(f"Interpreter failed: {e}")

        try:
            result = parse_interpretation(raw)
        except InterpretationError:
            raise
        except Exception as e:
            logger.error(f"Unusable interpreter reply: {e}", component="Interpreter", exc_info=True)
            raise InterpretationError(f"Interpreter returned unusable data: {e}")
        logger.info(
            f"Interpreted {len(result.items)} item(s), {result.dropped_count} dropped",
            component="Interpreter"
        )
        return result

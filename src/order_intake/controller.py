"""
Order Intake Workflow Controller
================================

Owns the DraftOrder and is its only writer. Drives the five stages:

1. Items       - interpret pasted text or add items by hand
2. Products    - confirm each item against the catalog, attach photos
3. Delivery    - destination, address (optionally geocoded), window
4. Customer    - name, national id, phone
5. Payment     - reconcile payments against the total and submit

Collaborator failures are caught here, logged, queued as notices and
returned as result dicts; the draft is never left half-updated.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Union

import config
from .address_resolver import AddressResolver
from .catalog_matcher import CatalogMatcher
from .draft_order import (
    DraftOrder,
    LineItem,
    PaymentEntry,
    PaymentMethod,
    ProductCandidate,
    SaleType,
    build_payload,
    parse_amount,
)
from .errors import (
    CollaboratorError,
    InterpretationError,
    ReconciliationError,
    SubmissionRejected,
    SubmitInProgressError,
    ValidationError,
)
from .interpreter import InterpretationResult, OrderInterpreter
from .phone import normalize_phone, phone_error
from .services import IntakeServices
from .stage_gate import IssueKind, can_advance, item_issues, stage_issues, submission_issues
from utils.logger import get_logger

logger = get_logger()

_PAYMENT_ALIASES = {
    'CASH': PaymentMethod.CASH,
    'EFECTIVO': PaymentMethod.CASH,
    'QR': PaymentMethod.QR,
    'TRANSFER': PaymentMethod.TRANSFER,
    'TRANSFERENCIA': PaymentMethod.TRANSFER,
}

_DELIVERY_FIELDS = {
    'raw_address_text', 'destination_label', 'is_parcel_shipment',
    'delivery_date', 'window_start', 'window_end', 'notes',
}
_CUSTOMER_FIELDS = {'name', 'national_id', 'phone'}
_DELIVERY_TEXT_FIELDS = _DELIVERY_FIELDS - {'is_parcel_shipment'}


@dataclass
class Notice:
    """Transient user notification (toast)"""
    level: str  # 'success' | 'info' | 'warning' | 'error'
    message: str


def _result(success: bool, message: str = "", errors: List[str] = None,
            error_kind: str = None, **extra) -> Dict:
    result = {
        'success': success,
        'message': message,
        'errors': list(errors or []),
    }
    if error_kind:
        result['error_kind'] = error_kind
    result.update(extra)
    return result


def _coerce_payment_method(method: Union[PaymentMethod, str]) -> Optional[PaymentMethod]:
    if isinstance(method, PaymentMethod):
        return method
    return _PAYMENT_ALIASES.get(str(method or '').strip().upper())


def _coerce_sale_type(sale_type) -> Optional[SaleType]:
    if sale_type is None or isinstance(sale_type, SaleType):
        return sale_type
    value = str(sale_type).strip().upper()
    if not value:
        return None
    return SaleType(value)


def _join_hint(existing: str, hint: str) -> str:
    """Append an interpreter hint to what the agent already typed"""
    existing = (existing or '').strip()
    if not existing or existing == hint:
        return hint
    return f"{existing} | {hint}"


def _field_error_lines(field_errors) -> List[str]:
    """Server field-level reasons, as the server worded them"""
    if isinstance(field_errors, dict):
        lines = []
        for field_name, reason in field_errors.items():
            if isinstance(reason, (list, tuple)):
                reason = "; ".join(str(r) for r in reason)
            lines.append(f"{field_name}: {reason}")
        return lines
    if isinstance(field_errors, (list, tuple)):
        return [str(e) for e in field_errors]
    return [str(field_errors)] if field_errors else []


class WorkflowController:
    """Stage machine and single writer for one order-entry session"""

    def __init__(self, services: IntakeServices, seller_name: str = None,
                 debounce_seconds: float = None):
        """
        Args:
            services: Collaborator clients (see services.build_services)
            seller_name: Known seller name; when omitted the placeholder is used
                         until start() resolves the identity service
            debounce_seconds: Override of the catalog search debounce
        """
        self.services = services
        if seller_name:
            self.draft = DraftOrder(seller_name, seller_bound=True)
        else:
            self.draft = DraftOrder(config.DEFAULT_SELLER_NAME)

        self.interpreter = OrderInterpreter(services.interpreter)
        self.address_resolver = AddressResolver(services.geocoder)
        self.catalog_matcher = CatalogMatcher(
            services.catalog,
            on_results=self._apply_candidates,
            on_error=self._on_search_error,
            debounce_seconds=debounce_seconds,
        )

        self.notices: List[Notice] = []
        self.is_interpreting = False
        self.is_geocoding = False
        self.is_submitting = False
        self._uploading: Set[str] = set()
        self.address_status: Optional[Dict] = None
        self.last_order_number: Optional[str] = None

    # ── notices ──────────────────────────────────────────────────

    def _notify(self, level: str, message: str):
        self.notices.append(Notice(level, message))

    def pop_notices(self) -> List[Notice]:
        notices, self.notices = self.notices, []
        return notices

    # ── session start ────────────────────────────────────────────

    async def start(self) -> Dict:
        """Resolve the seller name once; failures keep the placeholder"""
        if self.draft.seller_bound:
            return _result(True, self.draft.seller_name, seller_name=self.draft.seller_name)

        try:
            name = await asyncio.to_thread(self.services.identity.fetch_seller_name)
        except Exception as e:
            logger.log_collaborator_error("identity", e)
            self._notify('warning', f"Could not load seller profile, using '{self.draft.seller_name}'")
            return _result(False, str(e), error_kind='collaborator', seller_name=self.draft.seller_name)

        if not self.draft.seller_bound:
            self.draft.bind_seller(name)
        logger.info(f"Seller resolved: {name}", component="Workflow")
        return _result(True, name, seller_name=self.draft.seller_name)

    # ── stage navigation ─────────────────────────────────────────

    @property
    def stage(self) -> int:
        return self.draft.stage

    def can_advance(self) -> bool:
        return can_advance(self.draft.stage, self.draft)

    def blocking_issues(self) -> List[str]:
        return stage_issues(self.draft.stage, self.draft)

    def item_issues(self):
        return item_issues(self.draft)

    def advance(self) -> Dict:
        stage = self.draft.stage
        if stage >= DraftOrder.LAST_STAGE:
            return _result(False, "Already at the last stage, submit the order", error_kind='validation')

        issues = stage_issues(stage, self.draft)
        if issues:
            return _result(False, issues[0], issues, error_kind='validation', stage=stage)

        self.draft.stage = stage + 1
        logger.debug(f"Stage {stage} -> {self.draft.stage}", component="Workflow")
        return _result(True, stage=self.draft.stage)

    def go_back(self) -> Dict:
        if self.draft.stage > DraftOrder.FIRST_STAGE:
            self.draft.stage -= 1
        return _result(True, stage=self.draft.stage)

    def go_to(self, stage: int) -> Dict:
        """Jump backward freely; forward only one validated step at a time"""
        if not DraftOrder.FIRST_STAGE <= stage <= DraftOrder.LAST_STAGE:
            return _result(False, f"Unknown stage {stage}", error_kind='validation')
        if stage <= self.draft.stage:
            self.draft.stage = stage
            return _result(True, stage=stage)
        if stage == self.draft.stage + 1:
            return self.advance()
        return _result(False, "Stages cannot be skipped", error_kind='validation', stage=self.draft.stage)

    # ── interpretation ───────────────────────────────────────────

    async def interpret(self, text: str) -> Dict:
        if self.is_interpreting:
            return _result(False, "Interpretation already running", error_kind='busy')

        self.is_interpreting = True
        try:
            result = await self.interpreter.interpret(text)
        except InterpretationError as e:
            logger.log_collaborator_error("interpreter", e)
            self._notify('error', str(e))
            return _result(False, str(e), error_kind='collaborator')
        finally:
            self.is_interpreting = False

        self._merge_interpretation(result)
        for warning in result.warnings:
            self._notify('warning', warning)
        self._notify('success', f"{len(result.items)} product(s) interpreted")
        return _result(True, f"{len(result.items)} product(s) interpreted",
                       item_count=len(result.items), stage=self.draft.stage)

    def _merge_interpretation(self, result: InterpretationResult):
        draft = self.draft
        for old in draft.items:
            self.catalog_matcher.forget(old.line_id)
        draft.items = list(result.items)

        if result.customer_name:
            draft.customer.name = result.customer_name
        if result.customer_phone:
            draft.customer.phone = result.customer_phone
        if result.notes:
            draft.delivery.notes = _join_hint(draft.delivery.notes, result.notes)
        if result.payment_amount:
            draft.payments = [PaymentEntry(PaymentMethod.CASH, result.payment_amount)]

        if draft.stage == DraftOrder.FIRST_STAGE:
            draft.stage = 2

    # ── line items ───────────────────────────────────────────────

    def add_item(self, product_name: str = "", quantity: int = 0, unit_price: float = 0.0,
                 sale_type=None) -> int:
        """Append a manual item; returns its index"""
        item = LineItem(quantity=quantity, unit_price=unit_price, sale_type=_coerce_sale_type(sale_type))
        self.draft.items.append(item)
        index = len(self.draft.items) - 1
        if product_name:
            self.set_product_name(index, product_name)
        return index

    def remove_item(self, index: int) -> LineItem:
        item = self.draft.items.pop(index)
        self.catalog_matcher.forget(item.line_id)
        self._uploading.discard(item.line_id)
        return item

    def set_product_name(self, index: int, text: str):
        """Keystroke in the product field: rename and schedule a catalog search"""
        item = self.draft.items[index]
        item.rename(text)
        self.catalog_matcher.schedule(item.line_id, text)

    def set_quantity(self, index: int, value) -> Dict:
        quantity = parse_amount(value)
        if quantity is None or not float(quantity).is_integer():
            return _result(False, "Quantity must be a whole number", error_kind='validation')
        self.draft.items[index].quantity = int(quantity)
        return _result(True)

    def set_unit_price(self, index: int, value) -> Dict:
        price = parse_amount(value)
        if price is None:
            return _result(False, "Price must be a number", error_kind='validation')
        self.draft.items[index].unit_price = price
        return _result(True)

    def set_sale_type(self, index: int, sale_type) -> Dict:
        try:
            self.draft.items[index].sale_type = _coerce_sale_type(sale_type)
        except ValueError:
            return _result(False, f"Unknown sale type '{sale_type}'", error_kind='validation')
        return _result(True)

    def accept_candidate(self, index: int, candidate: Union[int, ProductCandidate]) -> Dict:
        item = self.draft.items[index]
        if isinstance(candidate, int):
            if not 0 <= candidate < len(item.candidates):
                return _result(False, "No such candidate", error_kind='validation')
            candidate = item.candidates[candidate]

        self.catalog_matcher.cancel(item.line_id)
        item.accept_candidate(candidate)
        logger.debug(f"Line {item.line_id} confirmed as {candidate.code}", component="Workflow")
        return _result(True, candidate.name, product_code=candidate.code)

    def is_searching(self, index: int) -> bool:
        return self.catalog_matcher.is_searching(self.draft.items[index].line_id)

    def _apply_candidates(self, line_id: str, text: str, candidates: List[ProductCandidate]):
        item = self.draft.find_line(line_id)
        if item is None:
            return
        if item.product_name.strip() != (text or '').strip():
            logger.debug(f"Line {line_id} ignoring results for '{text}'", component="Workflow")
            return
        item.offer_candidates(candidates)

    def _on_search_error(self, line_id: str, error: Exception):
        self._notify('error', f"Product search failed: {error}")

    # ── photos ───────────────────────────────────────────────────

    def is_uploading_image(self, index: int) -> bool:
        return self.draft.items[index].line_id in self._uploading

    async def attach_image(self, index: int, data: bytes, filename: str = "") -> Dict:
        line_id = self.draft.items[index].line_id
        if line_id in self._uploading:
            return _result(False, "A photo is already uploading for this item", error_kind='busy')

        self._uploading.add(line_id)
        try:
            reference = await asyncio.to_thread(self.services.image_store.store, data, filename)
        except Exception as e:
            logger.log_collaborator_error("image_store", e)
            self._notify('error', f"Photo upload failed: {e}")
            return _result(False, f"Photo upload failed: {e}", error_kind='collaborator')
        finally:
            self._uploading.discard(line_id)

        item = self.draft.find_line(line_id)
        if item is None:
            return _result(False, "Item was removed before the photo finished uploading",
                           error_kind='collaborator')
        item.image_reference = reference
        self._notify('success', "Photo attached")
        return _result(True, reference=reference)

    # ── delivery ─────────────────────────────────────────────────

    def update_delivery(self, **fields) -> Dict:
        unknown = set(fields) - _DELIVERY_FIELDS
        if unknown:
            raise ValueError(f"Unknown delivery field(s): {', '.join(sorted(unknown))}")

        fields = {
            name: (value or '') if name in _DELIVERY_TEXT_FIELDS else bool(value)
            for name, value in fields.items()
        }
        delivery = self.draft.delivery
        if 'raw_address_text' in fields and fields['raw_address_text'] != delivery.raw_address_text:
            # A verified address only describes the text it was verified from
            delivery.normalized_address = None
            delivery.coordinates = None
            self.address_status = None

        for name, value in fields.items():
            setattr(delivery, name, value)
        return _result(True)

    @property
    def address_verified(self) -> bool:
        return (
            not self.is_geocoding
            and bool(self.address_status and self.address_status.get('ok'))
            and self.draft.delivery.normalized_address is not None
        )

    async def verify_address(self) -> Dict:
        if self.is_geocoding:
            return _result(False, "Address verification already running", error_kind='busy')

        text = self.draft.delivery.raw_address_text
        self.is_geocoding = True
        self.address_status = None
        try:
            geocode = await self.address_resolver.resolve(text)
        except ValidationError as e:
            self.address_status = {'ok': False, 'message': str(e)}
            return _result(False, str(e), e.issues, error_kind='validation')
        except CollaboratorError as e:
            logger.log_collaborator_error("geocoder", e)
            self.address_status = {'ok': False, 'message': str(e)}
            self._notify('error', "Could not verify the address")
            return _result(False, str(e), error_kind='collaborator')
        finally:
            self.is_geocoding = False

        if self.draft.delivery.raw_address_text != text:
            return _result(False, "Address changed while verifying, verify again", error_kind='validation')

        self.draft.delivery.apply_geocode(geocode)
        self.address_status = {'ok': True, 'message': geocode.formatted_address}
        self._notify('success', "Address verified")
        return _result(True, geocode.formatted_address, geocode=geocode)

    # ── customer ─────────────────────────────────────────────────

    def update_customer(self, **fields) -> Dict:
        unknown = set(fields) - _CUSTOMER_FIELDS
        if unknown:
            raise ValueError(f"Unknown customer field(s): {', '.join(sorted(unknown))}")

        customer = self.draft.customer
        for name, value in fields.items():
            value = value or ''
            if name == 'phone' and value.strip():
                value = normalize_phone(value)
            setattr(customer, name, value)

        error = phone_error(customer.phone) if 'phone' in fields else None
        return _result(True, phone_error=error)

    # ── payments ─────────────────────────────────────────────────

    def add_payment(self, method, amount) -> Dict:
        """
        Record a payment. Submission accepts a single payment entry; extra
        rows are kept so the agent can fix them, but Submit rejects them.
        """
        payment_method = _coerce_payment_method(method)
        if payment_method is None:
            return _result(False, f"Unknown payment method '{method}'", error_kind='validation')
        value = parse_amount(amount)
        if value is None or value < 0:
            return _result(False, "Payment amount must be a number, 0 or more", error_kind='validation')

        self.draft.payments.append(PaymentEntry(payment_method, value))
        if len(self.draft.payments) > config.MAX_PAYMENT_ENTRIES:
            message = "Only one payment method per order is accepted at submission"
            self._notify('warning', message)
            return _result(True, message, payment_count=len(self.draft.payments))
        return _result(True, payment_count=len(self.draft.payments))

    def update_payment(self, index: int, method=None, amount=None) -> Dict:
        payment = self.draft.payments[index]
        new_method = payment.method
        new_amount = payment.amount
        if method is not None:
            new_method = _coerce_payment_method(method)
            if new_method is None:
                return _result(False, f"Unknown payment method '{method}'", error_kind='validation')
        if amount is not None:
            new_amount = parse_amount(amount)
            if new_amount is None or new_amount < 0:
                return _result(False, "Payment amount must be a number, 0 or more", error_kind='validation')
        payment.method = new_method
        payment.amount = new_amount
        return _result(True)

    def remove_payment(self, index: int) -> PaymentEntry:
        return self.draft.payments.pop(index)

    def totals(self) -> Dict:
        items_total = round(self.draft.items_total(), 2)
        payments_total = round(self.draft.payments_total(), 2)
        difference = round(items_total - payments_total, 2)
        return {
            'items_total': items_total,
            'payments_total': payments_total,
            'difference': difference,
            'reconciled': abs(difference) <= config.PAYMENT_EPSILON,
        }

    # ── submission ───────────────────────────────────────────────

    @staticmethod
    def _ensure_submittable(draft: DraftOrder):
        issues = submission_issues(draft)
        validation = [i.message for i in issues if i.kind is IssueKind.VALIDATION]
        if validation:
            raise ValidationError(validation[0], validation)
        reconciliation = [i.message for i in issues if i.kind is IssueKind.RECONCILIATION]
        if reconciliation:
            raise ReconciliationError(reconciliation[0], reconciliation)

    def _acquire_submit(self):
        if self.is_submitting:
            raise SubmitInProgressError("Order is already being submitted")
        self.is_submitting = True

    async def submit(self) -> Dict:
        """
        Re-validate everything and send the order

        Returns:
            Result dict; on success includes 'order_number'
        """
        try:
            self._acquire_submit()
        except SubmitInProgressError as e:
            logger.warning(f"Submit ignored: {e}", component="Submit")
            return _result(False, str(e), error_kind=e.kind)

        draft = self.draft
        try:
            if draft.stage != DraftOrder.LAST_STAGE:
                return _result(False, "Orders can only be submitted from the payment stage",
                               error_kind='validation')
            try:
                self._ensure_submittable(draft)
            except (ValidationError, ReconciliationError) as e:
                self._notify('error', str(e))
                return _result(False, str(e), e.issues, error_kind=e.kind)

            payload = build_payload(draft)
            logger.log_submit_start(draft.seller_name, len(draft.items), payload['total_amount'])
            started = time.monotonic()

            try:
                order_number = await asyncio.to_thread(self.services.persistence.submit, payload)
            except SubmissionRejected as e:
                logger.log_collaborator_error("persistence", f"{e} (status {e.status_code})")
                lines = _field_error_lines(e.field_errors)
                self._notify('error', str(e))
                return _result(False, str(e), lines, error_kind='collaborator',
                               field_errors=e.field_errors, status_code=e.status_code)
            except CollaboratorError as e:
                logger.log_collaborator_error("persistence", e)
                self._notify('error', str(e))
                return _result(False, str(e), error_kind='collaborator', status_code=e.status_code)
            except Exception as e:
                logger.error(f"Order submission failed: {e}", component="Submit", exc_info=True)
                self._notify('error', f"Order service failed: {e}")
                return _result(False, f"Order service failed: {e}", error_kind='collaborator')

            logger.log_submit_complete(order_number, time.monotonic() - started)
            for item in draft.items:
                self.catalog_matcher.forget(item.line_id)
            self.draft = DraftOrder.fresh(draft.seller_name, seller_bound=draft.seller_bound)
            self.address_status = None
            self.last_order_number = order_number
            self._notify('success', f"Order {order_number} created")
            return _result(True, f"Order {order_number} created", order_number=order_number)
        finally:
            self.is_submitting = False

    def close(self):
        self.catalog_matcher.close()

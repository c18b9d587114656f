"""
Stage Gate – Advancement Predicates
===================================

Pure functions over a DraftOrder. Nothing here mutates the draft or caches
results; callers evaluate them whenever they need a fresh answer.

Stage 1 -> 2: at least one item
Stage 2 -> 3: every item named, priced, quantified, photographed and confirmed
Stage 3 -> 4: destination plus an address (normalized or raw)
Stage 4 -> 5: customer name, national id and a valid phone
Stage 5:      full re-validation plus payment reconciliation
"""
from dataclasses import dataclass
from enum import Enum
from typing import List

import config
from .draft_order import DraftOrder, LineItem, RecognitionStatus
from .phone import phone_error


class ItemProblem(Enum):
    MISSING_NAME = 'missing_name'
    INVALID_QUANTITY = 'invalid_quantity'
    INVALID_PRICE = 'invalid_price'
    MISSING_IMAGE = 'missing_image'
    UNRECOGNIZED = 'unrecognized'


_PROBLEM_MESSAGES = {
    ItemProblem.MISSING_NAME: "product name is empty",
    ItemProblem.INVALID_QUANTITY: "quantity must be greater than 0",
    ItemProblem.INVALID_PRICE: "unit price must be greater than 0",
    ItemProblem.MISSING_IMAGE: "photo is missing",
    ItemProblem.UNRECOGNIZED: "product not confirmed against the catalog",
}


class IssueKind(Enum):
    VALIDATION = 'validation'
    RECONCILIATION = 'reconciliation'


@dataclass(frozen=True)
class ItemIssue:
    """Why one line item blocks stage 2"""
    index: int
    product_name: str
    problems: tuple

    @property
    def messages(self) -> List[str]:
        return [_PROBLEM_MESSAGES[p] for p in self.problems]

    def describe(self) -> str:
        label = self.product_name.strip() or "(unnamed)"
        return f"Item {self.index + 1} '{label}': " + ", ".join(self.messages)


@dataclass(frozen=True)
class GateIssue:
    kind: IssueKind
    message: str


def item_problems(item: LineItem) -> List[ItemProblem]:
    problems = []
    if not (item.product_name or "").strip():
        problems.append(ItemProblem.MISSING_NAME)
    if item.quantity is None or not item.quantity > 0:
        problems.append(ItemProblem.INVALID_QUANTITY)
    if item.unit_price is None or not item.unit_price > 0:
        problems.append(ItemProblem.INVALID_PRICE)
    if not item.image_reference:
        problems.append(ItemProblem.MISSING_IMAGE)
    if item.recognition_status is not RecognitionStatus.CONFIRMED:
        problems.append(ItemProblem.UNRECOGNIZED)
    return problems


def item_issues(draft: DraftOrder) -> List[ItemIssue]:
    """List every item that fails the stage-2 rules, with its reasons"""
    issues = []
    for idx, item in enumerate(draft.items):
        problems = item_problems(item)
        if problems:
            issues.append(ItemIssue(index=idx, product_name=item.product_name, problems=tuple(problems)))
    return issues


def _items_messages(draft: DraftOrder) -> List[str]:
    if not draft.items:
        return ["Add at least one item"]
    return [issue.describe() for issue in item_issues(draft)]


def _delivery_messages(draft: DraftOrder) -> List[str]:
    messages = []
    delivery = draft.delivery
    if not delivery.destination_label.strip():
        messages.append("Destination is required")
    if not delivery.normalized_address and not delivery.raw_address_text.strip():
        messages.append("Delivery address is required")
    return messages


def _customer_messages(draft: DraftOrder) -> List[str]:
    messages = []
    customer = draft.customer
    if not customer.name.strip():
        messages.append("Customer name is required")
    if not customer.national_id.strip():
        messages.append("Customer national ID is required")
    error = phone_error(customer.phone)
    if error:
        messages.append(error)
    return messages


def reconciliation_messages(draft: DraftOrder) -> List[str]:
    """Payment policy and total-vs-payments check"""
    payments = draft.payments
    if len(payments) > config.MAX_PAYMENT_ENTRIES:
        return [
            f"Only {config.MAX_PAYMENT_ENTRIES} payment method per order is supported "
            f"({len(payments)} entered)"
        ]

    messages = []
    for idx, payment in enumerate(payments):
        if payment.amount is None or not payment.amount >= 0:
            messages.append(f"Payment {idx + 1} has an invalid amount")

    items_total = draft.items_total()
    payments_total = draft.payments_total()
    if not abs(items_total - payments_total) <= config.PAYMENT_EPSILON:
        messages.append(
            f"Payments ({payments_total:.2f}) do not match the order total ({items_total:.2f})"
        )
    return messages


def submission_issues(draft: DraftOrder) -> List[GateIssue]:
    """Re-validate every stage, then reconcile payments"""
    issues = [
        GateIssue(IssueKind.VALIDATION, msg)
        for msg in _items_messages(draft) + _delivery_messages(draft) + _customer_messages(draft)
    ]
    issues.extend(
        GateIssue(IssueKind.RECONCILIATION, msg) for msg in reconciliation_messages(draft)
    )
    return issues


def stage_issues(stage: int, draft: DraftOrder) -> List[str]:
    """Human-readable reasons the given stage cannot be left forward"""
    if stage == 1:
        return [] if draft.items else ["Add at least one item"]
    if stage == 2:
        return _items_messages(draft)
    if stage == 3:
        return _delivery_messages(draft)
    if stage == 4:
        return _customer_messages(draft)
    if stage == 5:
        return [issue.message for issue in submission_issues(draft)]
    return [f"Unknown stage {stage}"]


def can_advance(stage: int, draft: DraftOrder) -> bool:
    return not stage_issues(stage, draft)

"""
Stage Gate Tests
================

Tests that:
- Stage 2 is blocked iff some item has an empty name, quantity <= 0,
  price <= 0, no photo, or is not confirmed.
- Blocking items are reported with their reasons.
- Delivery and customer gates follow their field rules.
- Submission re-validates everything and reconciles payments (single
  payment, 0.01 tolerance).
"""
import itertools
import os
import sys
import unittest

SRC_DIR = os.path.join(os.path.dirname(__file__), '..', 'src')
if os.path.abspath(SRC_DIR) not in sys.path:
    sys.path.insert(0, os.path.abspath(SRC_DIR))

from order_intake.draft_order import (
    DraftOrder,
    GeocodeResult,
    LineItem,
    PaymentEntry,
    PaymentMethod,
    ProductCandidate,
    RecognitionStatus,
)
from order_intake.stage_gate import (
    IssueKind,
    ItemProblem,
    can_advance,
    item_issues,
    stage_issues,
    submission_issues,
)


def confirmed_item(name="Soporte TV", quantity=1, price=150.0, image="/img/a.jpg"):
    item = LineItem(product_name="soporte", quantity=quantity, unit_price=price, image_reference=image)
    item.accept_candidate(ProductCandidate(name=name, code="SOP-1"))
    return item


def ready_draft():
    """A draft that satisfies every gate with total 150.00"""
    draft = DraftOrder("Ana")
    draft.items.append(confirmed_item())
    draft.delivery.destination_label = "Santa Cruz"
    draft.delivery.raw_address_text = "Av. Banzer 123"
    draft.customer.name = "Juan Perez"
    draft.customer.national_id = "1234567"
    draft.customer.phone = "59177712345"
    draft.payments.append(PaymentEntry(PaymentMethod.CASH, 150.0))
    draft.stage = 5
    return draft


class TestItemsGate(unittest.TestCase):
    def test_stage_one_needs_an_item(self):
        draft = DraftOrder("Ana")
        self.assertFalse(can_advance(1, draft))
        draft.items.append(LineItem())
        self.assertTrue(can_advance(1, draft))

    def test_stage_two_false_iff_any_item_violates(self):
        """Exhaustive over each field being valid or not"""
        name_opts = ["Soporte", "", "   "]
        qty_opts = [2, 0, -1]
        price_opts = [10.0, 0.0, -5.0]
        image_opts = ["/img/x.jpg", None]
        status_opts = list(RecognitionStatus)

        for name, qty, price, image, status in itertools.product(
            name_opts, qty_opts, price_opts, image_opts, status_opts
        ):
            item = LineItem(product_name=name, quantity=qty, unit_price=price,
                            image_reference=image, recognition_status=status)
            draft = DraftOrder("Ana")
            draft.items = [confirmed_item(), item]

            violates = (
                not name.strip() or qty <= 0 or price <= 0 or image is None
                or status is not RecognitionStatus.CONFIRMED
            )
            with self.subTest(name=name, qty=qty, price=price, image=image, status=status):
                self.assertEqual(can_advance(2, draft), not violates)

    def test_item_issues_name_reasons(self):
        draft = DraftOrder("Ana")
        ok = confirmed_item()
        no_photo = confirmed_item(image=None)
        unrecognized = LineItem(product_name="cable", quantity=1, unit_price=5.0,
                                image_reference="/img/c.jpg")
        no_price = confirmed_item(price=0.0)
        draft.items = [ok, no_photo, unrecognized, no_price]

        issues = item_issues(draft)

        self.assertEqual([i.index for i in issues], [1, 2, 3])
        self.assertEqual(issues[0].problems, (ItemProblem.MISSING_IMAGE,))
        self.assertEqual(issues[1].problems, (ItemProblem.UNRECOGNIZED,))
        self.assertEqual(issues[2].problems, (ItemProblem.INVALID_PRICE,))
        self.assertIn("Item 2", issues[0].describe())
        self.assertIn("photo is missing", issues[0].describe())

    def test_empty_item_list_blocks_stage_two(self):
        self.assertFalse(can_advance(2, DraftOrder("Ana")))


class TestDeliveryGate(unittest.TestCase):
    def test_requires_destination(self):
        draft = DraftOrder("Ana")
        draft.delivery.raw_address_text = "Av. Banzer 123"
        self.assertFalse(can_advance(3, draft))
        draft.delivery.destination_label = "Santa Cruz"
        self.assertTrue(can_advance(3, draft))

    def test_raw_address_is_enough(self):
        draft = DraftOrder("Ana")
        draft.delivery.destination_label = "Santa Cruz"
        self.assertFalse(can_advance(3, draft))
        self.assertIn("Delivery address is required", stage_issues(3, draft))
        draft.delivery.raw_address_text = "Calle 1"
        self.assertTrue(can_advance(3, draft))

    def test_normalized_address_is_enough(self):
        draft = DraftOrder("Ana")
        draft.delivery.destination_label = "Santa Cruz"
        draft.delivery.apply_geocode(GeocodeResult("Calle 1, Santa Cruz", -17.7, -63.1))
        self.assertTrue(can_advance(3, draft))


class TestCustomerGate(unittest.TestCase):
    def _draft(self, name="Juan", national_id="123", phone="59177712345"):
        draft = DraftOrder("Ana")
        draft.customer.name = name
        draft.customer.national_id = national_id
        draft.customer.phone = phone
        return draft

    def test_complete_customer_passes(self):
        self.assertTrue(can_advance(4, self._draft()))

    def test_missing_fields_block(self):
        self.assertFalse(can_advance(4, self._draft(name="")))
        self.assertFalse(can_advance(4, self._draft(national_id=" ")))
        self.assertFalse(can_advance(4, self._draft(phone="")))

    def test_invalid_phone_blocks_with_message(self):
        draft = self._draft(phone="123")
        self.assertFalse(can_advance(4, draft))
        self.assertTrue(any("591" in msg for msg in stage_issues(4, draft)))


class TestSubmissionGate(unittest.TestCase):
    def test_ready_draft_passes(self):
        draft = ready_draft()
        self.assertEqual(submission_issues(draft), [])
        self.assertTrue(can_advance(5, draft))

    def test_payment_within_epsilon_passes(self):
        draft = ready_draft()
        draft.payments[0].amount = 149.995
        self.assertEqual(submission_issues(draft), [])

    def test_payment_mismatch_is_reconciliation_issue(self):
        draft = ready_draft()
        draft.payments[0].amount = 149.0

        issues = submission_issues(draft)
        self.assertEqual(len(issues), 1)
        self.assertIs(issues[0].kind, IssueKind.RECONCILIATION)
        self.assertIn("149.00", issues[0].message)

    def test_two_payments_rejected_even_if_they_add_up(self):
        draft = ready_draft()
        draft.payments = [PaymentEntry(PaymentMethod.CASH, 100.0), PaymentEntry(PaymentMethod.QR, 50.0)]

        issues = submission_issues(draft)
        self.assertTrue(issues)
        self.assertTrue(all(i.kind is IssueKind.RECONCILIATION for i in issues))

    def test_no_payment_does_not_reconcile(self):
        draft = ready_draft()
        draft.payments = []
        self.assertFalse(can_advance(5, draft))

    def test_nan_price_blocks_items_and_submission(self):
        draft = ready_draft()
        draft.items[0].unit_price = float("nan")

        self.assertFalse(can_advance(2, draft))
        self.assertEqual(item_issues(draft)[0].problems, (ItemProblem.INVALID_PRICE,))
        self.assertTrue(any(i.kind is IssueKind.VALIDATION for i in submission_issues(draft)))

    def test_nan_total_never_reconciles(self):
        draft = ready_draft()
        draft.items[0].quantity = float("nan")
        draft.payments[0].amount = 5.0

        kinds = {i.kind for i in submission_issues(draft)}
        self.assertIn(IssueKind.RECONCILIATION, kinds)

    def test_nan_payment_is_invalid(self):
        draft = ready_draft()
        draft.payments[0].amount = float("nan")

        messages = [i.message for i in submission_issues(draft)]
        self.assertIn("Payment 1 has an invalid amount", messages)

    def test_earlier_stage_corruption_is_caught(self):
        draft = ready_draft()
        draft.items[0].rename("something else")

        issues = submission_issues(draft)
        self.assertTrue(any(i.kind is IssueKind.VALIDATION for i in issues))


if __name__ == "__main__":
    unittest.main()

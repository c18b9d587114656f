"""
Order Interpreter Tests
=======================

Tests that:
- Interpreter items are re-validated (names trimmed, quantity >= 1, price >= 0).
- Items with candidates start AMBIGUOUS, others UNKNOWN; none start CONFIRMED.
- Customer / notes / payment hints are extracted and the phone normalized.
- Blank input, service errors and empty results raise InterpretationError.
- The Gemini reply parser tolerates markdown fences and surrounding chatter.
"""
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

SRC_DIR = os.path.join(os.path.dirname(__file__), '..', 'src')
if os.path.abspath(SRC_DIR) not in sys.path:
    sys.path.insert(0, os.path.abspath(SRC_DIR))

from order_intake.draft_order import RecognitionStatus, SaleType
from order_intake.errors import CollaboratorError, InterpretationError
from order_intake.interpreter import OrderInterpreter, parse_interpretation


class TestParseInterpretation(unittest.TestCase):
    def test_items_are_revalidated(self):
        result = parse_interpretation({
            'items': [
                {'name': '  Cojin de silicona ', 'quantity': '2', 'unitPrice': '70,50'},
                {'product_name': 'Espaldar', 'quantity': 0, 'unit_price': -4},
                {'name': '   ', 'quantity': 3, 'unitPrice': 10},
                'garbage',
            ]
        })

        self.assertEqual(len(result.items), 2)
        first, second = result.items
        self.assertEqual(first.product_name, "Cojin de silicona")
        self.assertEqual(first.quantity, 2)
        self.assertEqual(first.unit_price, 70.5)
        self.assertEqual(second.quantity, 1)
        self.assertEqual(second.unit_price, 0.0)
        self.assertEqual(result.dropped_count, 2)
        self.assertTrue(result.warnings)

    def test_recognition_status_from_candidates(self):
        result = parse_interpretation({
            'items': [
                {'name': 'soporte', 'quantity': 1, 'unitPrice': 10,
                 'candidates': [{'name': 'Soporte TV', 'code': 'SOP-1'}]},
                {'name': 'cable', 'quantity': 1, 'unitPrice': 5, 'product_code': 'CAB-9'},
            ]
        })

        with_candidates, without = result.items
        self.assertIs(with_candidates.recognition_status, RecognitionStatus.AMBIGUOUS)
        self.assertEqual(with_candidates.candidates[0].code, 'SOP-1')
        self.assertIs(without.recognition_status, RecognitionStatus.UNKNOWN)
        self.assertIsNone(without.product_code)

    def test_hints(self):
        result = parse_interpretation({
            'items': [{'name': 'soporte', 'quantity': 1, 'unitPrice': 10, 'saleType': 'mayor'}],
            'customerName': ' Maria Lopez ',
            'customerPhone': '777-12345',
            'notes': 'Entregar en la tarde',
            'paymentAmount': '10',
        })

        self.assertEqual(result.customer_name, "Maria Lopez")
        self.assertEqual(result.customer_phone, "59177712345")
        self.assertEqual(result.notes, "Entregar en la tarde")
        self.assertEqual(result.payment_amount, 10.0)
        self.assertIs(result.items[0].sale_type, SaleType.WHOLESALE)

    def test_zero_payment_hint_ignored(self):
        result = parse_interpretation({'items': [{'name': 'x y z'}], 'paymentAmount': 0})
        self.assertIsNone(result.payment_amount)

    def test_non_finite_quantity_falls_back_to_one(self):
        result = parse_interpretation({
            'items': [
                {'name': 'Soporte', 'quantity': 'inf', 'unitPrice': 10},
                {'name': 'Cable', 'quantity': 'nan', 'unitPrice': 'nan'},
            ],
            'paymentAmount': 'inf',
        })

        self.assertEqual([i.quantity for i in result.items], [1, 1])
        self.assertEqual(result.items[1].unit_price, 0.0)
        self.assertIsNone(result.payment_amount)

    def test_fractional_quantity_is_reported(self):
        result = parse_interpretation({'items': [{'name': 'Soporte', 'quantity': 2.5, 'unitPrice': 10}]})

        self.assertEqual(result.items[0].quantity, 2)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("2.5", result.warnings[0])

    def test_no_valid_items_raises(self):
        with self.assertRaises(InterpretationError):
            parse_interpretation({'items': [{'name': ''}]})
        with self.assertRaises(InterpretationError):
            parse_interpretation({'error': 'nope'})


class TestOrderInterpreter(unittest.IsolatedAsyncioTestCase):
    async def test_blank_text_does_not_call_service(self):
        service = MagicMock()
        interpreter = OrderInterpreter(service)

        with self.assertRaises(InterpretationError):
            await interpreter.interpret("   ")
        service.interpret.assert_not_called()

    async def test_service_error_is_wrapped(self):
        service = MagicMock()
        service.interpret.side_effect = CollaboratorError("backend down", service="x", status_code=502)

        with self.assertRaises(InterpretationError) as ctx:
            await OrderInterpreter(service).interpret("2 soportes")
        self.assertEqual(str(ctx.exception), "backend down")
        self.assertEqual(ctx.exception.status_code, 502)

    async def test_unexpected_exception_is_wrapped(self):
        service = MagicMock()
        service.interpret.side_effect = RuntimeError("boom")

        with self.assertRaises(InterpretationError):
            await OrderInterpreter(service).interpret("2 soportes")

    async def test_unexpected_parse_failure_is_wrapped(self):
        service = MagicMock()
        service.interpret.return_value = {'items': []}

        with patch('order_intake.interpreter.parse_interpretation', side_effect=OverflowError("too big")):
            with self.assertRaises(InterpretationError) as ctx:
                await OrderInterpreter(service).interpret("2 soportes")
        self.assertIn("too big", str(ctx.exception))

    async def test_success(self):
        service = MagicMock()
        service.interpret.return_value = {'items': [{'name': 'soporte', 'quantity': 2, 'unitPrice': 75}]}

        result = await OrderInterpreter(service).interpret("2 soportes a 75")

        service.interpret.assert_called_once_with("2 soportes a 75")
        self.assertEqual(result.items[0].line_total, 150.0)


class TestGeminiReplyParsing(unittest.TestCase):
    def _parse(self, text):
        from order_intake.gemini_interpreter import GeminiInterpreterService
        return GeminiInterpreterService._parse_response(text)

    def test_plain_json(self):
        self.assertEqual(self._parse('{"items": []}'), {'items': []})

    def test_markdown_fences(self):
        self.assertEqual(self._parse('```json\n{"items": [{"name": "a"}]}\n```'), {'items': [{'name': 'a'}]})

    def test_json_inside_chatter(self):
        self.assertEqual(self._parse('Here you go: {"items": []} thanks'), {'items': []})

    def test_not_json(self):
        with self.assertRaises(InterpretationError):
            self._parse("no json here")

    @patch('order_intake.gemini_interpreter.genai')
    def test_quota_error_maps_to_429(self, mock_genai):
        from order_intake.gemini_interpreter import GeminiInterpreterService

        mock_genai.GenerativeModel.return_value.generate_content.side_effect = Exception(
            "429 Resource has been exhausted (e.g. check quota)."
        )
        service = GeminiInterpreterService(model_name="test-model")

        with self.assertRaises(InterpretationError) as ctx:
            service.interpret("2 soportes")
        self.assertEqual(ctx.exception.status_code, 429)

    @patch('order_intake.gemini_interpreter.genai')
    def test_interpret_returns_parsed_reply(self, mock_genai):
        from order_intake.gemini_interpreter import GeminiInterpreterService

        response = MagicMock()
        response.text = '```json\n{"items": [{"name": "Espaldar", "quantity": 1, "unitPrice": 70}]}\n```'
        mock_genai.GenerativeModel.return_value.generate_content.return_value = response

        data = GeminiInterpreterService(model_name="test-model").interpret("combo espaldar 70")
        self.assertEqual(data['items'][0]['name'], "Espaldar")


if __name__ == "__main__":
    unittest.main()

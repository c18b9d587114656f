"""
Phone Normalization Tests
=========================

Tests that:
- Bare 8-digit mobile numbers get the 591 country code.
- Numbers already carrying 591 are left alone.
- Anything else comes back as digits and fails the strict check.
"""
import os
import sys
import unittest

SRC_DIR = os.path.join(os.path.dirname(__file__), '..', 'src')
if os.path.abspath(SRC_DIR) not in sys.path:
    sys.path.insert(0, os.path.abspath(SRC_DIR))


class TestNormalizePhone(unittest.TestCase):
    def test_local_mobile_gets_country_code(self):
        from order_intake.phone import normalize_phone

        self.assertEqual(normalize_phone("77712345"), "59177712345")
        self.assertEqual(normalize_phone("6123 4567"), "59161234567")

    def test_country_code_number_unchanged(self):
        from order_intake.phone import normalize_phone

        self.assertEqual(normalize_phone("59177712345"), "59177712345")

    def test_formatting_characters_are_stripped(self):
        from order_intake.phone import normalize_phone

        self.assertEqual(normalize_phone("+591 777-12345"), "59177712345")
        self.assertEqual(normalize_phone("(777) 12-345"), "59177712345")

    def test_non_mobile_prefix_is_not_prefixed(self):
        from order_intake.phone import normalize_phone

        # Landline-style prefix 3 is not a mobile operator prefix
        self.assertEqual(normalize_phone("33445566"), "33445566")

    def test_short_input_returned_as_digits(self):
        from order_intake.phone import normalize_phone

        self.assertEqual(normalize_phone("123"), "123")
        self.assertEqual(normalize_phone(""), "")
        self.assertEqual(normalize_phone(None), "")


class TestPhoneStrictCheck(unittest.TestCase):
    def test_valid_numbers_pass(self):
        from order_intake.phone import phone_error, is_valid_phone

        self.assertIsNone(phone_error("77712345"))
        self.assertIsNone(phone_error("59177712345"))
        self.assertTrue(is_valid_phone("+591 61234567"))

    def test_short_number_fails_with_message(self):
        from order_intake.phone import phone_error

        error = phone_error("123")
        self.assertIsNotNone(error)
        self.assertIn("591", error)
        self.assertIn("123", error)

    def test_too_long_country_code_number_fails(self):
        from order_intake.phone import phone_error

        self.assertIsNotNone(phone_error("5917771234599"))

    def test_blank_phone_fails(self):
        from order_intake.phone import phone_error

        self.assertEqual(phone_error("   "), "Phone number is required")


if __name__ == "__main__":
    unittest.main()

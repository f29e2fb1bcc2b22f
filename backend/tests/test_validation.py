import unittest
from datetime import datetime
from decimal import Decimal

from posledger.validation import (
    ValidationError,
    money_field,
    parse_exchange_rate,
    parse_id_list,
    parse_int,
    parse_money_string,
    parse_optional_datetime,
    parse_quantity,
)


class MoneyParsingTests(unittest.TestCase):
    def test_decimal_strings(self):
        self.assertEqual(parse_money_string("10.00", "amount"), 1000)
        self.assertEqual(parse_money_string("3.5", "amount"), 350)
        self.assertEqual(parse_money_string("7", "amount"), 700)
        self.assertEqual(parse_money_string(" 0.01 ", "amount"), 1)

    def test_rejects_floats_and_precision_loss(self):
        for bad in (10.0, "10.001", "1e3", "", "abc", True):
            with self.assertRaises(ValidationError):
                parse_money_string(bad, "amount")

    def test_money_field_prefers_cents(self):
        self.assertEqual(money_field({"amount_cents": 250, "amount": "9.99"}, "amount"), 250)
        self.assertEqual(money_field({"amount": "9.99"}, "amount"), 999)
        self.assertIsNone(money_field({}, "amount"))
        self.assertEqual(money_field({}, "amount", default=0), 0)
        with self.assertRaises(ValidationError):
            money_field({}, "amount", required=True)
        with self.assertRaises(ValidationError):
            money_field({"amount_cents": 2.5}, "amount")


class ScalarParsingTests(unittest.TestCase):
    def test_parse_int(self):
        self.assertEqual(parse_int("42", "x"), 42)
        for bad in ("4.2", "1e2", 4.0, False, None, ""):
            with self.assertRaises(ValidationError):
                parse_int(bad, "x")

    def test_parse_quantity(self):
        self.assertEqual(parse_quantity(3), 3)
        with self.assertRaises(ValidationError):
            parse_quantity(0)

    def test_exchange_rate(self):
        self.assertEqual(parse_exchange_rate("4.85"), Decimal("4.85"))
        self.assertIsNone(parse_exchange_rate(None))
        for bad in ("0", "-1", "4.123456", 4.85, "x"):
            with self.assertRaises(ValidationError):
                parse_exchange_rate(bad)

    def test_id_list(self):
        self.assertEqual(parse_id_list([1, "2"], "ids"), [1, 2])
        self.assertEqual(parse_id_list(None, "ids"), [])
        with self.assertRaises(ValidationError):
            parse_id_list([1, 1], "ids")
        with self.assertRaises(ValidationError):
            parse_id_list("1,2", "ids")


class DateRangeParsingTests(unittest.TestCase):
    def test_offsets_normalized_to_utc_naive(self):
        self.assertEqual(
            parse_optional_datetime("2026-03-01T12:00:00+02:00", "start"),
            datetime(2026, 3, 1, 10, 0),
        )
        self.assertEqual(parse_optional_datetime("2026-03-01T12:00:00Z", "start"), datetime(2026, 3, 1, 12, 0))
        self.assertEqual(parse_optional_datetime("2026-03-01T12:00:00", "start"), datetime(2026, 3, 1, 12, 0))

    def test_bare_date_bounds(self):
        self.assertEqual(parse_optional_datetime("2026-03-31", "start"), datetime(2026, 3, 31))
        self.assertEqual(
            parse_optional_datetime("2026-03-31", "end", end_of_range=True),
            datetime(2026, 4, 1),
        )

    def test_blank_and_bad_values(self):
        self.assertIsNone(parse_optional_datetime(None, "start"))
        self.assertIsNone(parse_optional_datetime("", "start"))
        for bad in ("yesterday", "2026-13-01", 1700000000):
            with self.assertRaises(ValidationError):
                parse_optional_datetime(bad, "start")

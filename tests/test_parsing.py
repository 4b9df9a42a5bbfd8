"""Unit tests for the free-form answer parsers."""

import unittest
from datetime import date, datetime, time

from config import DEFAULT_ZONES
from errors import UserInputError
from models import TimeRange
from parsing import (parse_profile, parse_time_range, parse_user_date,
                     parse_zone, validate_start)
from support import WARSAW

TODAY = date(2026, 10, 20)  # a Tuesday


class ParseUserDateTests(unittest.TestCase):
    def parse(self, raw_value: str) -> date:
        return parse_user_date(raw_value, today=TODAY, max_days=60)

    def assert_rejected(self, raw_value: str, reason: str) -> None:
        with self.assertRaises(UserInputError) as ctx:
            self.parse(raw_value)
        self.assertEqual(ctx.exception.reason, reason)

    def test_natural_words(self) -> None:
        self.assertEqual(self.parse("dzisiaj"), TODAY)
        self.assertEqual(self.parse("Dziś"), TODAY)
        self.assertEqual(self.parse(" JUTRO "), date(2026, 10, 21))
        self.assertEqual(self.parse("pojutrze"), date(2026, 10, 22))

    def test_weekday_names_point_forward(self) -> None:
        self.assertEqual(self.parse("piątek"), date(2026, 10, 23))
        self.assertEqual(self.parse("pn"), date(2026, 10, 26))
        # the same weekday means next week, never today
        self.assertEqual(self.parse("wtorek"), date(2026, 10, 27))

    def test_numeric_formats(self) -> None:
        self.assertEqual(self.parse("05.11.2026"), date(2026, 11, 5))
        self.assertEqual(self.parse("5/11/26"), date(2026, 11, 5))
        self.assertEqual(self.parse("5.11"), date(2026, 11, 5))
        self.assertEqual(self.parse("2026-10-25"), date(2026, 10, 25))

    def test_day_month_in_the_past_rolls_to_next_year(self) -> None:
        # 19.10 has passed, so it means 2027 and lands outside the window
        self.assert_rejected("19.10", "too_far")

    def test_past_date_is_rejected(self) -> None:
        self.assert_rejected("19.10.2026", "past")

    def test_too_far_date_is_rejected(self) -> None:
        self.assert_rejected("20.12.2026", "too_far")
        self.assertEqual(self.parse("19.12.2026"), date(2026, 12, 19))

    def test_garbage_is_rejected(self) -> None:
        self.assert_rejected("", "empty")
        self.assert_rejected("kiedyś", "unparsed")
        self.assert_rejected("31.02.2026", "unparsed")


class ParseTimeRangeTests(unittest.TestCase):
    def test_common_shapes(self) -> None:
        expected = TimeRange(time(11, 0), time(19, 0))
        self.assertEqual(parse_time_range("11:00-19:00"), expected)
        self.assertEqual(parse_time_range("11-19"), expected)
        self.assertEqual(parse_time_range("11.00 – 19.00"), expected)
        self.assertEqual(parse_time_range("9:3-17"), TimeRange(time(9, 30), time(17, 0)))

    def test_overnight_range_is_accepted(self) -> None:
        time_range = parse_time_range("22:00-06:00")
        self.assertTrue(time_range.overnight)
        self.assertEqual(time_range.label(), "22:00-06:00")

    def test_rejections(self) -> None:
        cases = {
            "rano": "unparsed",
            "25:00-26:00": "out_of_range",
            "10:75-12:00": "out_of_range",
            "10:00-10:00": "empty_range",
        }
        for raw_value, reason in cases.items():
            with self.subTest(raw_value=raw_value):
                with self.assertRaises(UserInputError) as ctx:
                    parse_time_range(raw_value)
                self.assertEqual(ctx.exception.reason, reason)


class ValidateStartTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime(2026, 10, 20, 9, 0, tzinfo=WARSAW)

    def test_today_in_the_past_is_rejected(self) -> None:
        with self.assertRaises(UserInputError) as ctx:
            validate_start(TODAY, TimeRange(time(8, 0), time(12, 0)), self.now)
        self.assertEqual(ctx.exception.reason, "started")
        with self.assertRaises(UserInputError):
            validate_start(TODAY, TimeRange(time(9, 0), time(12, 0)), self.now)

    def test_future_start_passes(self) -> None:
        validate_start(TODAY, TimeRange(time(10, 0), time(12, 0)), self.now)
        validate_start(date(2026, 10, 21), TimeRange(time(6, 0), time(12, 0)), self.now)


class ParseProfileTests(unittest.TestCase):
    def test_names_are_capitalised(self) -> None:
        profile = parse_profile("jan kowalski 12345", 7)
        self.assertEqual(profile.user_id, 7)
        self.assertEqual(profile.first_name, "Jan")
        self.assertEqual(profile.last_name, "Kowalski")
        self.assertEqual(profile.courier_id, "12345")

    def test_middle_tokens_join_the_last_name(self) -> None:
        profile = parse_profile("Anna maria nowak-kowalska 42", 1)
        self.assertEqual(profile.first_name, "Anna")
        self.assertEqual(profile.last_name, "Maria Nowak-Kowalska")
        self.assertEqual(profile.full_name, "Anna Maria Nowak-Kowalska")

    def test_rejections(self) -> None:
        cases = {
            "Jan 12345": "tokens",
            "Jan Kowalski abc": "courier_id",
            "Jan K0walski 12345": "name",
        }
        for raw_value, reason in cases.items():
            with self.subTest(raw_value=raw_value):
                with self.assertRaises(UserInputError) as ctx:
                    parse_profile(raw_value, 1)
                self.assertEqual(ctx.exception.reason, reason)


class ParseZoneTests(unittest.TestCase):
    def test_case_insensitive_match_returns_canonical_name(self) -> None:
        self.assertEqual(parse_zone("centrum", DEFAULT_ZONES), "Centrum")
        self.assertEqual(parse_zone(" bemowo/bielany ", DEFAULT_ZONES), "Bemowo/Bielany")

    def test_unknown_zone(self) -> None:
        with self.assertRaises(UserInputError) as ctx:
            parse_zone("Kraków", DEFAULT_ZONES)
        self.assertEqual(ctx.exception.reason, "zone")


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    unittest.main()

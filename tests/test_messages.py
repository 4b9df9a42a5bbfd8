"""Unit tests for the user-facing message helpers."""

import unittest
from datetime import date, datetime, time

from messages import (INSTRUCTION_MESSAGE, build_claim_prompt,
                      build_new_shift_notice, build_profile_message,
                      build_reminder_notice, build_stats_message,
                      format_compact_date)
from models import Shift, Stat, TimeRange, UserProfile
from support import WARSAW

SHIFT = Shift(
    id=3,
    owner_id=1,
    owner_name="<Ola>",
    zone="Praga",
    day=date(2026, 10, 21),
    time_range=TimeRange(time(8, 0), time(16, 0)),
    created_at=datetime(2026, 10, 20, 9, 0, tzinfo=WARSAW),
)


class DateFormattingTests(unittest.TestCase):
    def test_compact_date_has_weekday(self) -> None:
        self.assertEqual(format_compact_date(date(2026, 10, 21)), "śr, 21.10.2026")


class ShiftMessageTests(unittest.TestCase):
    def test_new_shift_notice_escapes_owner(self) -> None:
        message = build_new_shift_notice(SHIFT)
        self.assertTrue(message.startswith("Nowa zmiana w Twojej strefie (Praga)"))
        self.assertIn("&lt;Ola&gt;", message)
        self.assertNotIn("<Ola>", message)

    def test_reminder_notice_is_distinct(self) -> None:
        self.assertTrue(build_reminder_notice(SHIFT).startswith("Przypomnienie"))

    def test_claim_prompt_without_shift_still_shows_identity(self) -> None:
        profile = UserProfile(2, "Jan", "Kowalski", "55")
        message = build_claim_prompt(None, profile)
        self.assertNotIn("Przejmujesz", message)
        self.assertIn("Jan Kowalski, ID: 55", message)


class ProfileAndStatsTests(unittest.TestCase):
    def test_missing_profile_asks_for_data(self) -> None:
        self.assertIn("Nie masz jeszcze profilu", build_profile_message(None))

    def test_stats_lines(self) -> None:
        message = build_stats_message(Stat(user_id=1, shifts_given=2, shifts_taken=1, subscriptions=3))
        self.assertIn("Oddane zmiany: 2", message)
        self.assertIn("Przejęte zmiany: 1", message)
        self.assertIn("Aktywne subskrypcje: 3", message)

    def test_instruction_mentions_expiry_window(self) -> None:
        self.assertIn("po 12 godzinach", INSTRUCTION_MESSAGE.format(max_age_hours=12))


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    unittest.main()

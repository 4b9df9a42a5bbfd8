"""Transport-neutral menus attached to outgoing messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

OFFER_BUTTON_TEXT = "Oddaj zmianę"
VIEW_BUTTON_TEXT = "Zobaczyć zmiany"
SUBSCRIBE_BUTTON_TEXT = "Subskrybuj strefę"
STATS_BUTTON_TEXT = "Moje statystyki"
MY_SHIFTS_BUTTON_TEXT = "Moje zmiany"
PROFILE_BUTTON_TEXT = "Mój profil"
HELP_BUTTON_TEXT = "Instrukcja"
RETURN_BUTTON_TEXT = "Powrót"
CONFIRM_BUTTON_TEXT = "Potwierdzam"


@dataclass(frozen=True)
class ReplyMenu:
    """Persistent keyboard replacing the text input."""

    rows: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class Button:
    text: str
    action: str


@dataclass(frozen=True)
class InlineMenu:
    """Buttons attached to a single message."""

    rows: Tuple[Tuple[Button, ...], ...]


def main_menu() -> ReplyMenu:
    return ReplyMenu(
        rows=(
            (OFFER_BUTTON_TEXT, VIEW_BUTTON_TEXT),
            (SUBSCRIBE_BUTTON_TEXT, STATS_BUTTON_TEXT),
            (MY_SHIFTS_BUTTON_TEXT, PROFILE_BUTTON_TEXT),
            (HELP_BUTTON_TEXT,),
        )
    )


def zones_menu(zones: Iterable[str]) -> ReplyMenu:
    return ReplyMenu(rows=(*((zone,) for zone in zones), (RETURN_BUTTON_TEXT,)))


def return_menu() -> ReplyMenu:
    return ReplyMenu(rows=((RETURN_BUTTON_TEXT,),))


def confirm_menu() -> ReplyMenu:
    return ReplyMenu(rows=((CONFIRM_BUTTON_TEXT,), (RETURN_BUTTON_TEXT,)))


def single_button(text: str, action: str) -> InlineMenu:
    return InlineMenu(rows=((Button(text, action),),))


def zone_buttons(zones: Sequence[str], prefix: str) -> InlineMenu:
    return InlineMenu(rows=tuple((Button(zone, f"{prefix}:{zone}"),) for zone in zones))


def take_button(shift_id: int) -> InlineMenu:
    return single_button("Przejmuję zmianę", f"take:{shift_id}")


def withdraw_button(shift_id: int) -> InlineMenu:
    return single_button("Wycofaj", f"withdraw:{shift_id}")


def coordinator_button(shift_id: int, taker_id: int) -> InlineMenu:
    return single_button("Powiadomiłem koordynatora ✅", f"confirm:{shift_id}:{taker_id}")


def admin_delete_button(shift_id: int) -> InlineMenu:
    return single_button("Usuń", f"admin_del:{shift_id}")

"""Utilities for building the user-facing messages of the bot."""

from __future__ import annotations

import html
from datetime import date
from typing import Iterable, Optional

from models import Shift, Stat, UserProfile

WEEKDAY_SHORT_LABELS = ["pon", "wt", "śr", "czw", "pt", "sob", "nd"]

GREETING_MESSAGE = "Cześć! Co chcesz zrobić?"
IDLE_RESET_MESSAGE = "Minęło trochę czasu. Co chcesz zrobić?"
CANCELLED_MESSAGE = "Operacja anulowana."
CHOOSE_ZONE_MESSAGE = "Wybierz strefę:"
DATE_PROMPT_MESSAGE = "Na kiedy oddajesz zmianę? (np. dzisiaj, jutro, 05.05.2025)"
TIME_PROMPT_MESSAGE = "O jakich godzinach? (np. 11:00-19:00)"
PROFILE_PROMPT_MESSAGE = (
    "Podaj swoje imię, nazwisko i ID kuriera (np. Jan Kowalski 12345)"
)
PROFILE_REQUIRED_MESSAGE = (
    "Zanim przejmiesz zmianę, uzupełnij swój profil.\n" + PROFILE_PROMPT_MESSAGE
)
NO_SHIFTS_MESSAGE = "Brak dostępnych zmian w tej strefie."
NO_OWN_SHIFTS_MESSAGE = "Nie masz aktywnych zmian do oddania."
DUPLICATE_SHIFT_MESSAGE = (
    "Już oddałeś taką zmianę! Nie możesz oddać tej samej zmiany ponownie."
)
SHIFT_GONE_MESSAGE = "Ta zmiana już nie jest dostępna."
OWN_SHIFT_MESSAGE = "Nie możesz przejąć własnej zmiany."
GENERIC_ERROR_MESSAGE = "Wystąpił błąd. Spróbuj ponownie."
NO_STATS_MESSAGE = "Brak statystyk. Zacznij korzystać z bota, aby zbierać dane!"
NO_SUBSCRIPTIONS_MESSAGE = "Nie subskrybujesz żadnych stref."
SUBSCRIPTIONS_TITLE = "Twoje subskrypcje (kliknij, aby odsubskrybować):"
NOT_ALLOWED_MESSAGE = "Brak uprawnień."
BROADCAST_PROMPT_MESSAGE = "Napisz wiadomość, którą wyślę do wszystkich użytkowników."
COORDINATOR_PROMPT_MESSAGE = "Musisz teraz powiadomić koordynatora, że oddajesz zmianę."
COORDINATOR_THANKS_MESSAGE = (
    "Dziękujemy za potwierdzenie. Osoba przejmująca zmianę została powiadomiona."
)
COORDINATOR_CONFIRMED_MESSAGE = COORDINATOR_PROMPT_MESSAGE + "\n\n✅ Koordynator powiadomiony."
COORDINATOR_ALREADY_CONFIRMED_MESSAGE = "To potwierdzenie zostało już wysłane."

INSTRUCTION_MESSAGE = """📋 <b>Instrukcja obsługi bota Wymiana zmian</b>

Ten bot pomaga w wygodnej wymianie zmian między kurierami.

1. <b>Oddaj zmianę</b> 📅
   Wybierz strefę, datę i godziny zmiany, którą chcesz oddać. Subskrybenci strefy dostaną powiadomienie.
   Zmiana wygasa po {max_age_hours} godzinach albo gdy się zacznie.

2. <b>Zobaczyć zmiany</b> 🔍
   Przeglądaj dostępne zmiany w strefie i kliknij „Przejmuję zmianę”. Osoba oddająca dostanie Twoje dane.

3. <b>Subskrybuj strefę</b> 🔔
   Otrzymuj powiadomienia o nowych zmianach. Subskrypcjami zarządzasz komendą /subskrypcje.

4. <b>Moje zmiany</b>, <b>Mój profil</b>, <b>Moje statystyki</b> 📊
   Wycofuj swoje oferty, zmieniaj dane kuriera i sprawdzaj liczniki.

5. <b>Anulowanie</b> 🚫
   Użyj /cancel albo „Powrót”, aby przerwać bieżącą operację.

💡 Po przejęciu zmiany skontaktuj się z osobą oddającą, aby potwierdzić szczegóły."""


def format_compact_date(value: date) -> str:
    weekday = WEEKDAY_SHORT_LABELS[value.weekday()]
    return f"{weekday}, {value:%d.%m.%Y}"


def format_handle(owner_name: Optional[str]) -> str:
    return html.escape(owner_name or "Użytkownik")


def build_shift_summary(shift: Shift) -> str:
    return (
        f"{html.escape(shift.zone)}: {format_compact_date(shift.day)}, "
        f"{shift.time_range.label()}"
    )


def build_shift_card(shift: Shift) -> str:
    return (
        f"ID: {shift.id}\n"
        f"Data: {format_compact_date(shift.day)}, Godzina: {shift.time_range.label()}\n"
        f"Oddaje: {format_handle(shift.owner_name)}\n"
        "Chcesz przejąć tę zmianę?"
    )


def build_own_shift_card(shift: Shift) -> str:
    return f"ID: {shift.id}\n{build_shift_summary(shift)}"


def build_offer_saved_message(shift: Shift) -> str:
    return f"Zapisano: {build_shift_summary(shift)}"


def build_new_shift_notice(shift: Shift) -> str:
    return (
        f"Nowa zmiana w Twojej strefie ({html.escape(shift.zone)}): "
        f"{format_compact_date(shift.day)}, {shift.time_range.label()} "
        f"(od {format_handle(shift.owner_name)})"
    )


def build_reminder_notice(shift: Shift) -> str:
    return (
        f"Przypomnienie: zmiana w strefie ({html.escape(shift.zone)}) wciąż dostępna! "
        f"{format_compact_date(shift.day)}, {shift.time_range.label()} "
        f"(od {format_handle(shift.owner_name)})"
    )


def build_expired_notice(shift: Shift) -> str:
    return f"⏱ Nikt nie przejął Twojej zmiany, oferta wygasła.\n{build_shift_summary(shift)}"


def build_claim_prompt(shift: Optional[Shift], profile: UserProfile) -> str:
    lines = []
    if shift is not None:
        lines.append(f"Przejmujesz zmianę: {build_shift_summary(shift)}")
    lines.append(
        f"Twoje dane: {html.escape(profile.full_name)}, ID: {html.escape(profile.courier_id)}"
    )
    lines.append("Kliknij „Potwierdzam” albo wpisz inne imię, nazwisko i ID kuriera.")
    return "\n".join(lines)


def build_owner_claim_notice(shift: Shift, taker_handle: str, profile: UserProfile) -> str:
    return (
        f"{html.escape(taker_handle)} ({html.escape(profile.full_name)}, "
        f"ID: {html.escape(profile.courier_id)}) przejmuje Twoją zmianę:\n"
        f"{build_shift_summary(shift)}\n"
        "Skontaktuj się z tą osobą, aby ustalić szczegóły."
    )


def build_taker_success_message(shift: Shift) -> str:
    return (
        f"Zmiana jest Twoja: {build_shift_summary(shift)}\n"
        f"Wiadomość została wysłana do {format_handle(shift.owner_name)}. "
        "Skontaktuj się z tą osobą w celu ustalenia szczegółów."
    )


def build_owner_unreachable_message(shift: Shift) -> str:
    handle = format_handle(shift.owner_name)
    return (
        f"Zmiana jest Twoja, ale nie udało się powiadomić {handle}. "
        f"Skontaktuj się z tą osobą ręcznie. Może być konieczne rozpoczęcie "
        f"rozmowy z botem przez {handle} (np. wpisanie /start)."
    )


def build_coordinator_notice(owner_handle: str) -> str:
    handle = html.escape(owner_handle)
    return (
        f"Kurier {handle} już powiadomił koordynatora. Zmiana niebawem zostanie "
        f"przypisana do Twojego grafiku. W razie pytań pisz do koordynatora albo do {handle}."
    )


def build_profile_message(profile: Optional[UserProfile]) -> str:
    if profile is None:
        return "Nie masz jeszcze profilu.\n" + PROFILE_PROMPT_MESSAGE
    return (
        f"Twój profil: {html.escape(profile.full_name)}, ID kuriera: "
        f"{html.escape(profile.courier_id)}\n"
        "Aby zmienić dane, " + PROFILE_PROMPT_MESSAGE[0].lower() + PROFILE_PROMPT_MESSAGE[1:]
    )


def build_stats_message(stat: Optional[Stat]) -> str:
    if stat is None:
        return NO_STATS_MESSAGE
    return (
        "Twoje statystyki:\n"
        f"Oddane zmiany: {stat.shifts_given}\n"
        f"Przejęte zmiany: {stat.shifts_taken}\n"
        f"Aktywne subskrypcje: {stat.subscriptions}"
    )


def build_admin_summary(user_count: int, shifts: Iterable[Shift]) -> str:
    shifts = list(shifts)
    return (
        "Panel administratora\n"
        f"Znani użytkownicy: {user_count}\n"
        f"Otwarte zmiany: {len(shifts)}"
    )


def build_admin_shift_card(shift: Shift) -> str:
    return (
        f"ID: {shift.id} • {build_shift_summary(shift)}\n"
        f"Oddaje: {format_handle(shift.owner_name)} ({shift.owner_id})"
    )


def build_broadcast_report(sent: int, failed: int) -> str:
    return f"Wysłano: {sent}, błędy: {failed}."

"""Wizard states and the transition function driving the dialogs.

Each state is an immutable record carrying only the fields collected so far,
so a zone always precedes a date and a date always precedes a time range.
``advance`` maps ``(state, text)`` to the next state or raises
``UserInputError``; the caller keeps the old state on error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import ClassVar, Optional, Sequence, Union

import parsing
from errors import PreconditionError, UserInputError
from models import TimeRange, UserProfile

CONFIRM_WORDS = {"potwierdzam", "tak", "ok"}


@dataclass(frozen=True)
class WizardContext:
    user_id: int
    zones: Sequence[str]
    now: datetime
    max_days: int


@dataclass(frozen=True)
class MainMenu:
    mode: ClassVar[str] = "idle"


@dataclass(frozen=True)
class OfferZone:
    mode: ClassVar[str] = "offering"


@dataclass(frozen=True)
class OfferDate:
    zone: str
    mode: ClassVar[str] = "offering"


@dataclass(frozen=True)
class OfferTime:
    zone: str
    day: date
    mode: ClassVar[str] = "offering"


@dataclass(frozen=True)
class OfferReady:
    zone: str
    day: date
    time_range: TimeRange
    mode: ClassVar[str] = "offering"


@dataclass(frozen=True)
class ViewZone:
    zone: Optional[str] = None
    mode: ClassVar[str] = "viewing"


@dataclass(frozen=True)
class ShiftChosen:
    shift_id: int
    mode: ClassVar[str] = "claiming"


@dataclass(frozen=True)
class TakerInfoPending:
    shift_id: int
    profile: UserProfile
    mode: ClassVar[str] = "claiming"


@dataclass(frozen=True)
class ClaimReady:
    shift_id: int
    profile: UserProfile
    mode: ClassVar[str] = "claiming"


@dataclass(frozen=True)
class ProfileSetup:
    resume_shift_id: Optional[int] = None

    @property
    def mode(self) -> str:
        return "profile-setup" if self.resume_shift_id is not None else "editing"


@dataclass(frozen=True)
class ProfileReady:
    profile: UserProfile
    resume_shift_id: Optional[int] = None
    mode: ClassVar[str] = "editing"


@dataclass(frozen=True)
class SubscribeZone:
    mode: ClassVar[str] = "subscribing"


@dataclass(frozen=True)
class Broadcasting:
    mode: ClassVar[str] = "broadcasting"


@dataclass(frozen=True)
class BroadcastReady:
    text: str
    mode: ClassVar[str] = "broadcasting"


WizardState = Union[
    MainMenu,
    OfferZone,
    OfferDate,
    OfferTime,
    OfferReady,
    ViewZone,
    ShiftChosen,
    TakerInfoPending,
    ClaimReady,
    ProfileSetup,
    ProfileReady,
    SubscribeZone,
    Broadcasting,
    BroadcastReady,
]


def advance(state: WizardState, text: str, ctx: WizardContext) -> WizardState:
    if isinstance(state, OfferZone):
        return OfferDate(zone=parsing.parse_zone(text, ctx.zones))
    if isinstance(state, OfferDate):
        day = parsing.parse_user_date(text, today=ctx.now.date(), max_days=ctx.max_days)
        return OfferTime(zone=state.zone, day=day)
    if isinstance(state, OfferTime):
        time_range = parsing.parse_time_range(text)
        parsing.validate_start(state.day, time_range, ctx.now)
        return OfferReady(zone=state.zone, day=state.day, time_range=time_range)
    if isinstance(state, ViewZone):
        return ViewZone(zone=parsing.parse_zone(text, ctx.zones))
    if isinstance(state, TakerInfoPending):
        if (text or "").strip().lower() in CONFIRM_WORDS:
            return ClaimReady(shift_id=state.shift_id, profile=state.profile)
        profile = parsing.parse_profile(text, ctx.user_id)
        return ClaimReady(shift_id=state.shift_id, profile=profile)
    if isinstance(state, ProfileSetup):
        profile = parsing.parse_profile(text, ctx.user_id)
        return ProfileReady(profile=profile, resume_shift_id=state.resume_shift_id)
    if isinstance(state, Broadcasting):
        message = (text or "").strip()
        if not message:
            raise UserInputError("Wiadomość nie może być pusta.", reason="empty")
        return BroadcastReady(text=message)
    if isinstance(state, SubscribeZone):
        raise UserInputError("Kliknij strefę na liście powyżej.", reason="buttons_only")
    if isinstance(state, ShiftChosen):
        raise UserInputError("Kliknij przycisk przy wybranej zmianie.", reason="buttons_only")
    raise UserInputError("Wybierz opcję z menu.", reason="idle")


def choose_claimant(state: ShiftChosen, profile: Optional[UserProfile]) -> TakerInfoPending:
    if profile is None:
        raise PreconditionError("profile required before claiming")
    return TakerInfoPending(shift_id=state.shift_id, profile=profile)

"""Conversation handling: offering, viewing and claiming shifts.

Every entry point runs under the Session Store's per-user lock, so two updates
from the same user never interleave their wizard transitions. Updates from
different users do interleave; the only place where they race over the same
shift is ``ShiftRegistry.claim``, whose conditional delete decides the winner.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Set, Tuple

import keyboards
import messages
import wizard
from errors import ConflictError, PreconditionError, StoreError, TransportError, UserInputError
from wizard import (BroadcastReady, Broadcasting, ClaimReady, MainMenu, OfferDate,
                    OfferReady, OfferTime, OfferZone, ProfileReady, ProfileSetup,
                    ShiftChosen, SubscribeZone, TakerInfoPending, ViewZone,
                    WizardState)

LOGGER = logging.getLogger(__name__)

CONFLICT_MESSAGES = {
    "duplicate": messages.DUPLICATE_SHIFT_MESSAGE,
    "own": messages.OWN_SHIFT_MESSAGE,
    "gone": messages.SHIFT_GONE_MESSAGE,
    "started": messages.SHIFT_GONE_MESSAGE,
}


def parse_shift_id(payload: str) -> Optional[int]:
    try:
        value = int(payload)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


class ShiftWorkflow:
    def __init__(
        self,
        *,
        sessions: Any,
        registry: Any,
        notifier: Any,
        gateway: Any,
        store: Any,
        zones: Sequence[str],
        clock: Callable[[], datetime],
        admin_id: int = 0,
        max_days: int = 60,
        max_age_hours: int = 24,
    ) -> None:
        self.sessions = sessions
        self.registry = registry
        self.notifier = notifier
        self.gateway = gateway
        self.store = store
        self.zones = tuple(zones)
        self.clock = clock
        self.admin_id = admin_id
        self.max_days = max_days
        self.max_age_hours = max_age_hours
        self._menu_actions: Dict[str, Callable[[int, str], Awaitable[None]]] = {
            keyboards.OFFER_BUTTON_TEXT.lower(): self._begin_offer,
            keyboards.VIEW_BUTTON_TEXT.lower(): self._begin_view,
            keyboards.SUBSCRIBE_BUTTON_TEXT.lower(): self._begin_subscribe,
            keyboards.STATS_BUTTON_TEXT.lower(): self._show_stats,
            keyboards.MY_SHIFTS_BUTTON_TEXT.lower(): self._show_own_shifts,
            keyboards.PROFILE_BUTTON_TEXT.lower(): self._begin_profile_edit,
            keyboards.HELP_BUTTON_TEXT.lower(): self._show_help,
        }
        self._actions: Dict[str, Callable[[int, str, str, Optional[int]], Awaitable[Optional[str]]]] = {
            "take": self._on_take,
            "sub": self._on_subscribe,
            "unsub": self._on_unsubscribe,
            "confirm": self._on_coordinator_confirmed,
            "withdraw": self._on_withdraw,
            "admin_del": self._on_admin_delete,
        }
        # (shift id, owner id, taker id) of relayed coordinator confirmations
        self._confirmed: Set[Tuple[int, int, int]] = set()

    def is_admin(self, user_id: int) -> bool:
        return bool(self.admin_id) and user_id == self.admin_id

    # entry points

    async def start(self, user_id: int) -> None:
        async with self.sessions.serialized(user_id):
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, messages.GREETING_MESSAGE)
            LOGGER.info("User %s started the bot", user_id)

    async def cancel(self, user_id: int) -> None:
        async with self.sessions.serialized(user_id):
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, messages.CANCELLED_MESSAGE)
            LOGGER.info("User %s cancelled the current operation", user_id)

    async def handle_text(
        self,
        user_id: int,
        display_name: str,
        text: str,
        message_id: Optional[int] = None,
    ) -> None:
        async with self.sessions.serialized(user_id):
            try:
                await self._handle_text(user_id, display_name, (text or "").strip(), message_id)
            except StoreError:
                await self._fail(user_id)

    async def handle_action(
        self,
        user_id: int,
        display_name: str,
        data: str,
        message_id: Optional[int] = None,
    ) -> Optional[str]:
        """Process a button press; the result is the short answer to show.

        ``message_id`` identifies the message carrying the pressed button.
        """

        action, _, payload = (data or "").partition(":")
        handler = self._actions.get(action)
        if handler is None:
            LOGGER.warning("Unknown action %r from %s", data, user_id)
            return "Nieznana akcja."
        async with self.sessions.serialized(user_id):
            self.sessions.touch(user_id)
            LOGGER.info("User %s pressed %s", user_id, data)
            try:
                return await handler(user_id, display_name, payload, message_id)
            except StoreError:
                await self._fail(user_id)
                return None

    async def show_subscriptions(self, user_id: int) -> None:
        async with self.sessions.serialized(user_id):
            try:
                zones = await self.store.list_subscriptions(user_id)
            except StoreError:
                await self._fail(user_id)
                return
            if not zones:
                await self._send_menu(user_id, messages.NO_SUBSCRIPTIONS_MESSAGE)
                return
            await self._send(
                user_id,
                messages.SUBSCRIPTIONS_TITLE,
                keyboards.zone_buttons(zones, "unsub"),
            )

    async def show_admin_panel(self, user_id: int) -> None:
        async with self.sessions.serialized(user_id):
            if not self.is_admin(user_id):
                await self._send(user_id, messages.NOT_ALLOWED_MESSAGE)
                return
            try:
                known = await self.store.list_known_user_ids()
                shifts = await self.registry.snapshot()
            except StoreError:
                await self._fail(user_id)
                return
            await self._send(user_id, messages.build_admin_summary(len(known), shifts))
            for shift in sorted(shifts, key=lambda item: item.id):
                await self._send(
                    user_id,
                    messages.build_admin_shift_card(shift),
                    keyboards.admin_delete_button(shift.id),
                )

    async def begin_broadcast(self, user_id: int) -> None:
        async with self.sessions.serialized(user_id):
            if not self.is_admin(user_id):
                await self._send(user_id, messages.NOT_ALLOWED_MESSAGE)
                return
            await self.sessions.create(user_id, Broadcasting())
            await self._prompt(user_id, Broadcasting())

    # text handling

    async def _handle_text(
        self, user_id: int, display_name: str, text: str, message_id: Optional[int]
    ) -> None:
        session = self.sessions.get(user_id)
        if session is not None and self.sessions.is_stale(session):
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, messages.IDLE_RESET_MESSAGE)
            LOGGER.info("Session of %s reset after inactivity", user_id)
            return
        if session is not None:
            self.sessions.touch(user_id)
            self.sessions.remember_message(user_id, message_id)

        LOGGER.info(
            "Message from %s (%s): %r, mode: %s",
            user_id,
            display_name,
            text,
            session.mode if session else "none",
        )

        lowered = text.lower()
        if lowered == keyboards.RETURN_BUTTON_TEXT.lower():
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, messages.GREETING_MESSAGE)
            return
        menu_action = self._menu_actions.get(lowered)
        if menu_action is not None:
            await menu_action(user_id, display_name)
            return
        if session is None or isinstance(session.state, MainMenu):
            await self._send_menu(user_id, "Wybierz opcję z menu.")
            return

        try:
            new_state = wizard.advance(session.state, text, self._context(user_id))
        except UserInputError as exc:
            await self._send(
                user_id,
                f"Błąd: {exc.message}",
                self._keyboard_for(session.state),
                transient=True,
            )
            LOGGER.info("Invalid input from %s at %s: %s", user_id, type(session.state).__name__, exc.reason)
            return
        await self._enter(user_id, display_name, new_state)

    def _context(self, user_id: int) -> wizard.WizardContext:
        return wizard.WizardContext(
            user_id=user_id,
            zones=self.zones,
            now=self.clock(),
            max_days=self.max_days,
        )

    async def _enter(self, user_id: int, display_name: str, state: WizardState) -> None:
        if isinstance(state, OfferReady):
            await self._commit_offer(user_id, display_name, state)
        elif isinstance(state, ClaimReady):
            await self._commit_claim(user_id, display_name, state)
        elif isinstance(state, ProfileReady):
            await self._save_profile(user_id, state)
        elif isinstance(state, BroadcastReady):
            await self._start_broadcast(user_id, state)
        elif isinstance(state, ViewZone) and state.zone is not None:
            self._set_state(user_id, state)
            await self._show_zone(user_id, state.zone)
        else:
            self._set_state(user_id, state)
            await self._prompt(user_id, state)

    def _set_state(self, user_id: int, state: WizardState) -> None:
        session = self.sessions.get(user_id)
        if session is not None:
            session.state = state

    def _keyboard_for(self, state: WizardState) -> keyboards.ReplyMenu:
        if isinstance(state, (OfferZone, ViewZone)):
            return keyboards.zones_menu(self.zones)
        if isinstance(state, TakerInfoPending):
            return keyboards.confirm_menu()
        return keyboards.return_menu()

    async def _prompt(self, user_id: int, state: WizardState) -> None:
        if isinstance(state, (OfferZone, ViewZone)):
            text = messages.CHOOSE_ZONE_MESSAGE
        elif isinstance(state, OfferDate):
            text = messages.DATE_PROMPT_MESSAGE
        elif isinstance(state, OfferTime):
            text = messages.TIME_PROMPT_MESSAGE
        elif isinstance(state, TakerInfoPending):
            shift = await self.registry.get(state.shift_id)
            text = messages.build_claim_prompt(shift, state.profile)
        elif isinstance(state, ProfileSetup):
            if state.resume_shift_id is not None:
                text = messages.PROFILE_REQUIRED_MESSAGE
            else:
                text = messages.build_profile_message(await self.store.get_profile(user_id))
        elif isinstance(state, Broadcasting):
            text = messages.BROADCAST_PROMPT_MESSAGE
        elif isinstance(state, SubscribeZone):
            await self._send(
                user_id,
                messages.CHOOSE_ZONE_MESSAGE,
                keyboards.zone_buttons(self.zones, "sub"),
                transient=True,
            )
            return
        else:
            await self._send_menu(user_id, "Wybierz opcję z menu.")
            return
        await self._send(user_id, text, self._keyboard_for(state), transient=True)

    # menu entries

    async def _begin_offer(self, user_id: int, display_name: str) -> None:
        await self.sessions.create(user_id, OfferZone())
        await self._prompt(user_id, OfferZone())
        LOGGER.info("User %s (%s) started offering a shift", user_id, display_name)

    async def _begin_view(self, user_id: int, display_name: str) -> None:
        await self.sessions.create(user_id, ViewZone())
        await self._prompt(user_id, ViewZone())

    async def _begin_subscribe(self, user_id: int, display_name: str) -> None:
        await self.sessions.create(user_id, SubscribeZone())
        await self._prompt(user_id, SubscribeZone())

    async def _begin_profile_edit(self, user_id: int, display_name: str) -> None:
        await self.sessions.create(user_id, ProfileSetup())
        await self._prompt(user_id, ProfileSetup())

    async def _show_stats(self, user_id: int, display_name: str) -> None:
        await self.sessions.destroy(user_id)
        stat = await self.store.get_stats(user_id)
        await self._send_menu(user_id, messages.build_stats_message(stat))

    async def _show_help(self, user_id: int, display_name: str) -> None:
        await self.sessions.destroy(user_id)
        await self._send_menu(
            user_id, messages.INSTRUCTION_MESSAGE.format(max_age_hours=self.max_age_hours)
        )

    async def _show_own_shifts(self, user_id: int, display_name: str) -> None:
        await self.sessions.destroy(user_id)
        shifts = await self.registry.list_owned(user_id)
        if not shifts:
            await self._send_menu(user_id, messages.NO_OWN_SHIFTS_MESSAGE)
            return
        for shift in shifts:
            await self._send(
                user_id,
                messages.build_own_shift_card(shift),
                keyboards.withdraw_button(shift.id),
            )

    async def _show_zone(self, user_id: int, zone: str) -> None:
        shifts = await self.registry.list_visible(zone)
        self.sessions.unmark_viewed(user_id)
        LOGGER.info("Showing %s shifts of zone %s to %s", len(shifts), zone, user_id)
        if not shifts:
            await self._send(
                user_id,
                messages.NO_SHIFTS_MESSAGE,
                keyboards.zones_menu(self.zones),
                transient=True,
            )
            return
        self.sessions.mark_viewed(user_id, [shift.id for shift in shifts])
        for shift in shifts:
            await self._send(
                user_id,
                messages.build_shift_card(shift),
                keyboards.take_button(shift.id),
                transient=True,
            )

    # commits

    async def _commit_offer(self, user_id: int, display_name: str, state: OfferReady) -> None:
        try:
            shift = await self.registry.offer(
                owner_id=user_id,
                owner_name=display_name,
                zone=state.zone,
                day=state.day,
                time_range=state.time_range,
            )
        except ConflictError as exc:
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, CONFLICT_MESSAGES.get(exc.reason, messages.GENERIC_ERROR_MESSAGE))
            LOGGER.info(
                "User %s tried to offer a duplicate shift: %s %s %s",
                user_id,
                state.zone,
                state.day.isoformat(),
                state.time_range.label(),
            )
            return
        await self.sessions.destroy(user_id)
        await self._send_menu(user_id, messages.build_offer_saved_message(shift))
        self.notifier.spawn(
            self.notifier.notify_zone(
                shift.zone,
                user_id,
                messages.build_new_shift_notice(shift),
                starts_at=shift.starts_at(self.registry.tz),
            )
        )

    async def _commit_claim(self, user_id: int, display_name: str, state: ClaimReady) -> None:
        profile = state.profile
        try:
            shift = await self.registry.claim(state.shift_id, user_id)
        except ConflictError as exc:
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, CONFLICT_MESSAGES.get(exc.reason, messages.SHIFT_GONE_MESSAGE))
            LOGGER.info("Claim of shift %s by %s rejected: %s", state.shift_id, user_id, exc.reason)
            return
        await self.sessions.destroy(user_id)
        try:
            if await self.store.get_profile(user_id) != profile:
                await self.store.upsert_profile(profile)
        except StoreError:
            # the claim stands; only the remembered identity is lost
            LOGGER.exception("Could not save profile of %s after claiming shift %s", user_id, shift.id)
        try:
            await self.gateway.send(
                shift.owner_id,
                messages.build_owner_claim_notice(shift, display_name, profile),
            )
            await self.gateway.send(
                shift.owner_id,
                messages.COORDINATOR_PROMPT_MESSAGE,
                keyboards.coordinator_button(shift.id, user_id),
            )
        except TransportError as exc:
            LOGGER.warning("Could not notify owner %s about claim of shift %s: %s", shift.owner_id, shift.id, exc)
            await self._send_menu(user_id, messages.build_owner_unreachable_message(shift))
            return
        await self._send_menu(user_id, messages.build_taker_success_message(shift))

    async def _save_profile(self, user_id: int, state: ProfileReady) -> None:
        await self.store.upsert_profile(state.profile)
        LOGGER.info("User %s saved profile with courier id %s", user_id, state.profile.courier_id)
        if state.resume_shift_id is None:
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, "Profil zapisany.\n" + messages.build_profile_message(state.profile))
            return
        pending = wizard.choose_claimant(ShiftChosen(state.resume_shift_id), state.profile)
        self._set_state(user_id, pending)
        await self._prompt(user_id, pending)

    async def _start_broadcast(self, user_id: int, state: BroadcastReady) -> None:
        await self.sessions.destroy(user_id)
        if not self.is_admin(user_id):
            await self._send_menu(user_id, messages.NOT_ALLOWED_MESSAGE)
            return
        await self._send_menu(user_id, "Wysyłam wiadomość do wszystkich użytkowników...")
        self.notifier.spawn(self._broadcast_and_report(user_id, state.text))

    async def _broadcast_and_report(self, user_id: int, text: str) -> None:
        report = await self.notifier.broadcast(text)
        try:
            await self.gateway.send(
                user_id, messages.build_broadcast_report(len(report.sent), len(report.failed))
            )
        except TransportError as exc:
            LOGGER.warning("Could not deliver broadcast report to %s: %s", user_id, exc)

    # button actions

    async def _on_take(
        self, user_id: int, display_name: str, payload: str, message_id: Optional[int]
    ) -> Optional[str]:
        shift_id = parse_shift_id(payload)
        if shift_id is None:
            return "Nieprawidłowa zmiana."
        session = await self.sessions.get_or_create(user_id)
        chosen = ShiftChosen(shift_id)
        session.state = chosen
        self.sessions.mark_viewed(user_id, [shift_id])
        shift = await self.registry.get(shift_id)
        if shift is None or self.registry.has_started(shift):
            await self.sessions.destroy(user_id)
            await self._send_menu(user_id, messages.SHIFT_GONE_MESSAGE)
            return messages.SHIFT_GONE_MESSAGE
        if shift.owner_id == user_id:
            session.state = MainMenu()
            return messages.OWN_SHIFT_MESSAGE
        LOGGER.info("User %s wants to take shift %s", user_id, shift_id)
        try:
            pending = wizard.choose_claimant(chosen, await self.store.get_profile(user_id))
        except PreconditionError:
            redirect = ProfileSetup(resume_shift_id=shift_id)
            session.state = redirect
            await self._prompt(user_id, redirect)
            return None
        session.state = pending
        await self._prompt(user_id, pending)
        return None

    async def _on_subscribe(
        self, user_id: int, display_name: str, zone: str, message_id: Optional[int]
    ) -> Optional[str]:
        if zone not in self.zones:
            return "Nie ma takiej strefy."
        added = await self.store.upsert_subscription(user_id, zone)
        if added:
            await self.store.increment_stat(user_id, "subscriptions", 1)
            LOGGER.info("User %s subscribed to zone %s", user_id, zone)
        await self.sessions.destroy(user_id)
        text = (
            f"Zapisano subskrypcję na: {zone}" if added else f"Już subskrybujesz strefę: {zone}"
        )
        await self._send_menu(user_id, text)
        return None

    async def _on_unsubscribe(
        self, user_id: int, display_name: str, zone: str, message_id: Optional[int]
    ) -> Optional[str]:
        removed = await self.store.delete_subscription(user_id, zone)
        if removed:
            await self.store.increment_stat(user_id, "subscriptions", -1)
            LOGGER.info("User %s unsubscribed from zone %s", user_id, zone)
            await self._send_menu(user_id, f"Odsubskrybowano strefę: {zone}")
            return None
        return "Nie subskrybujesz tej strefy."

    async def _on_coordinator_confirmed(
        self, user_id: int, display_name: str, payload: str, message_id: Optional[int]
    ) -> Optional[str]:
        shift_text, _, taker_text = payload.partition(":")
        shift_id = parse_shift_id(shift_text)
        taker_id = parse_shift_id(taker_text)
        if shift_id is None or taker_id is None:
            return "Nieprawidłowe potwierdzenie."
        key = (shift_id, user_id, taker_id)
        if key in self._confirmed:
            return messages.COORDINATOR_ALREADY_CONFIRMED_MESSAGE
        try:
            await self.gateway.send(taker_id, messages.build_coordinator_notice(display_name))
        except TransportError as exc:
            LOGGER.warning("Could not relay coordinator notice for shift %s to %s: %s", shift_id, taker_id, exc)
            await self._send_menu(
                user_id,
                "Nie udało się powiadomić osoby przejmującej. Skontaktuj się z nią ręcznie.",
            )
            return None
        self._confirmed.add(key)
        LOGGER.info("Owner %s confirmed coordinator notice for shift %s, taker %s", user_id, shift_id, taker_id)
        if message_id is not None:
            try:
                await self.gateway.edit(user_id, message_id, messages.COORDINATOR_CONFIRMED_MESSAGE)
            except TransportError as exc:
                LOGGER.debug("Could not remove coordinator button from %s: %s", message_id, exc)
        await self._send_menu(user_id, messages.COORDINATOR_THANKS_MESSAGE)
        return None

    async def _on_withdraw(
        self, user_id: int, display_name: str, payload: str, message_id: Optional[int]
    ) -> Optional[str]:
        shift_id = parse_shift_id(payload)
        if shift_id is None:
            return "Nieprawidłowa zmiana."
        try:
            shift = await self.registry.withdraw(shift_id, user_id)
        except ConflictError:
            return messages.SHIFT_GONE_MESSAGE
        await self._send_menu(user_id, f"Wycofano zmianę: {messages.build_shift_summary(shift)}")
        return None

    async def _on_admin_delete(
        self, user_id: int, display_name: str, payload: str, message_id: Optional[int]
    ) -> Optional[str]:
        if not self.is_admin(user_id):
            return messages.NOT_ALLOWED_MESSAGE
        shift_id = parse_shift_id(payload)
        if shift_id is None:
            return "Nieprawidłowa zmiana."
        if await self.registry.remove(shift_id, f"deleted by operator {user_id}"):
            return f"Usunięto zmianę {shift_id}."
        return messages.SHIFT_GONE_MESSAGE

    # delivery to the acting user

    async def _send(
        self,
        user_id: int,
        text: str,
        keyboard: Any = None,
        *,
        transient: bool = False,
    ) -> Optional[int]:
        try:
            message_id = await self.gateway.send(user_id, text, keyboard)
        except TransportError as exc:
            LOGGER.warning("Could not reply to %s: %s", user_id, exc)
            return None
        if transient:
            self.sessions.remember_message(user_id, message_id)
        return message_id

    async def _send_menu(self, user_id: int, text: str) -> None:
        await self._send(user_id, text, keyboards.main_menu())

    async def _fail(self, user_id: int) -> None:
        LOGGER.exception("Store failure while handling update of %s", user_id)
        await self.sessions.destroy(user_id)
        await self._send_menu(user_id, messages.GENERIC_ERROR_MESSAGE)

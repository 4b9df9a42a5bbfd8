"""Outbound chat transport."""

from __future__ import annotations

import logging
from typing import Optional, Union

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.types import (InlineKeyboardButton, InlineKeyboardMarkup,
                           KeyboardButton, ReplyKeyboardMarkup)

from errors import TransportError
from keyboards import InlineMenu, ReplyMenu

LOGGER = logging.getLogger(__name__)

Keyboard = Union[ReplyMenu, InlineMenu, None]
Markup = Union[ReplyKeyboardMarkup, InlineKeyboardMarkup, None]


class ChannelGateway:
    """Contract used by the workflow, the dispatcher and the sweep."""

    async def send(self, user_id: int, text: str, keyboard: Keyboard = None) -> int:
        raise NotImplementedError

    async def edit(
        self, user_id: int, message_id: int, text: str, keyboard: Keyboard = None
    ) -> None:
        raise NotImplementedError

    async def delete(self, user_id: int, message_id: int) -> None:
        """Best-effort removal; never raises."""

        raise NotImplementedError


def build_markup(keyboard: Keyboard) -> Markup:
    if isinstance(keyboard, ReplyMenu):
        return ReplyKeyboardMarkup(
            keyboard=[[KeyboardButton(text=label) for label in row] for row in keyboard.rows],
            resize_keyboard=True,
        )
    if isinstance(keyboard, InlineMenu):
        return InlineKeyboardMarkup(
            inline_keyboard=[
                [InlineKeyboardButton(text=button.text, callback_data=button.action) for button in row]
                for row in keyboard.rows
            ]
        )
    return None


class TelegramGateway(ChannelGateway):
    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def send(self, user_id: int, text: str, keyboard: Keyboard = None) -> int:
        try:
            message = await self.bot.send_message(
                user_id,
                text,
                reply_markup=build_markup(keyboard),
            )
        except TelegramAPIError as exc:
            raise TransportError(user_id, str(exc)) from exc
        return message.message_id

    async def edit(
        self, user_id: int, message_id: int, text: str, keyboard: Keyboard = None
    ) -> None:
        markup = build_markup(keyboard)
        try:
            await self.bot.edit_message_text(
                text,
                chat_id=user_id,
                message_id=message_id,
                reply_markup=markup if isinstance(markup, InlineKeyboardMarkup) else None,
            )
        except TelegramAPIError as exc:
            raise TransportError(user_id, str(exc)) from exc

    async def delete(self, user_id: int, message_id: Optional[int]) -> None:
        if not message_id:
            return
        try:
            await self.bot.delete_message(user_id, message_id)
        except TelegramAPIError as exc:
            LOGGER.debug("Could not delete message %s of %s: %s", message_id, user_id, exc)

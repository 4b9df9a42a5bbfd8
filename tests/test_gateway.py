"""Tests for the Telegram gateway with a stand-in bot object."""

import unittest
from types import SimpleNamespace

from aiogram.exceptions import TelegramForbiddenError
from aiogram.types import InlineKeyboardMarkup, ReplyKeyboardMarkup

import keyboards
from errors import TransportError
from gateway import TelegramGateway, build_markup


class RecordingBot:
    def __init__(self, blocked=()):
        self.blocked = set(blocked)
        self.calls = []

    async def send_message(self, chat_id, text, reply_markup=None):
        if chat_id in self.blocked:
            raise TelegramForbiddenError(method=None, message="Forbidden: bot was blocked by the user")
        self.calls.append(("send", chat_id, text, reply_markup))
        return SimpleNamespace(message_id=len(self.calls))

    async def edit_message_text(self, text, chat_id=None, message_id=None, reply_markup=None):
        if chat_id in self.blocked:
            raise TelegramForbiddenError(method=None, message="Forbidden")
        self.calls.append(("edit", chat_id, message_id, reply_markup))

    async def delete_message(self, chat_id, message_id):
        if chat_id in self.blocked:
            raise TelegramForbiddenError(method=None, message="Forbidden")
        self.calls.append(("delete", chat_id, message_id))


class BuildMarkupTests(unittest.TestCase):
    def test_reply_menu(self) -> None:
        markup = build_markup(keyboards.main_menu())
        self.assertIsInstance(markup, ReplyKeyboardMarkup)
        self.assertTrue(markup.resize_keyboard)
        self.assertEqual(markup.keyboard[0][0].text, keyboards.OFFER_BUTTON_TEXT)

    def test_inline_menu(self) -> None:
        markup = build_markup(keyboards.take_button(7))
        self.assertIsInstance(markup, InlineKeyboardMarkup)
        self.assertEqual(markup.inline_keyboard[0][0].callback_data, "take:7")

    def test_no_keyboard(self) -> None:
        self.assertIsNone(build_markup(None))


class TelegramGatewayTests(unittest.IsolatedAsyncioTestCase):
    async def test_send_returns_message_id(self) -> None:
        bot = RecordingBot()
        gateway = TelegramGateway(bot)
        self.assertEqual(await gateway.send(5, "hej"), 1)
        self.assertEqual(bot.calls[0][:3], ("send", 5, "hej"))

    async def test_api_errors_become_transport_errors(self) -> None:
        gateway = TelegramGateway(RecordingBot(blocked={5}))
        with self.assertRaises(TransportError) as ctx:
            await gateway.send(5, "hej")
        self.assertEqual(ctx.exception.user_id, 5)
        with self.assertRaises(TransportError):
            await gateway.edit(5, 1, "hej")

    async def test_edit_keeps_inline_markup_only(self) -> None:
        bot = RecordingBot()
        gateway = TelegramGateway(bot)
        await gateway.edit(5, 3, "hej", keyboards.main_menu())
        await gateway.edit(5, 3, "hej", keyboards.take_button(1))
        self.assertIsNone(bot.calls[0][3])
        self.assertIsInstance(bot.calls[1][3], InlineKeyboardMarkup)

    async def test_delete_never_raises(self) -> None:
        bot = RecordingBot(blocked={5})
        gateway = TelegramGateway(bot)
        await gateway.delete(5, 10)
        await gateway.delete(6, None)
        self.assertEqual(bot.calls, [])


if __name__ == "__main__":  # pragma: no cover - convenience entry point
    unittest.main()

"""Telegram outbound adapter on top of an aiogram Bot."""

from __future__ import annotations

import logging
from typing import Union

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

logger = logging.getLogger(__name__)


ChatId = Union[int, str]


class TelegramMessenger:
    """
    Sends the three kinds of Telegram messages the watcher produces.

    Broadcasts go to the public channel with a portal login button, personal
    alerts go to one subscriber chat, and operator notices go to the operator.
    """

    def __init__(self, bot: Bot, channel_chat_id: ChatId, operator_chat_id: ChatId, login_link: str) -> None:
        self._bot = bot
        self._channel_chat_id = channel_chat_id
        self._operator_chat_id = operator_chat_id
        self._login_link = login_link

    def login_keyboard(self) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            inline_keyboard=[
                [InlineKeyboardButton(text="🔑 Login to portal Now", url=self._login_link)],
            ]
        )

    async def send_broadcast(self, text: str) -> None:
        await self._bot.send_message(
            chat_id=self._channel_chat_id,
            text=text,
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=self.login_keyboard(),
        )

    async def send_personal(self, chat_id: ChatId, text: str) -> None:
        await self._bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=self.login_keyboard(),
        )

    async def notify_operator(self, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=self._operator_chat_id, text=text)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to send operator notification: %s", e)


__all__ = ["TelegramMessenger"]

"""Discord client that feeds incoming messages through the handler chain."""

from __future__ import annotations

import logging
from typing import List, Optional

import discord

from ..config import Settings
from ..service import FactoidService
from .handlers import BananaHandler, MessageHandler, PingHandler, RetortHandler, TeachHandler

logger = logging.getLogger(__name__)


class PandoraClient(discord.Client):
    def __init__(self, *, intents: discord.Intents) -> None:
        super().__init__(intents=intents)
        self._handlers: List[MessageHandler] = []

    @property
    def head(self) -> Optional[MessageHandler]:
        return self._handlers[0] if self._handlers else None

    def add_handler(self, handler: MessageHandler) -> None:
        if self._handlers:
            self._handlers[-1].set_next(handler)
        self._handlers.append(handler)

    async def on_ready(self) -> None:
        logger.info("Connected as %s", self.user)

    async def on_message(self, message: discord.Message) -> None:
        if self.user is not None and message.author == self.user:
            return
        head = self.head
        if head is None:
            return
        try:
            await head.handle(message)
        except Exception:  # pragma: no cover - defensive logging
            logger.exception("Handler chain failed for message %s", getattr(message, "id", "?"))


def build_client(
    settings: Settings,
    service: FactoidService,
    intents: Optional[discord.Intents] = None,
) -> PandoraClient:
    intents = intents or discord.Intents.default()
    intents.message_content = True
    intents.members = True
    client = PandoraClient(intents=intents)
    client.add_handler(PingHandler())
    client.add_handler(BananaHandler(settings.banana_emoji))
    client.add_handler(TeachHandler(service, settings.address_pattern))
    client.add_handler(RetortHandler(service, someone_sample_size=settings.someone_sample_size))
    return client


__all__ = ["PandoraClient", "build_client"]

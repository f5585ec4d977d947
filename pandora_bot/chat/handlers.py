"""Message handlers for the chat client.

Handlers form a chain of responsibility: each one either answers a message
or hands it to the next handler in the chain.
"""

from __future__ import annotations

import logging
import random
import re
from typing import Optional, Pattern, Tuple, Union

import discord

from ..errors import InterpolationError, PandoraError, ResponseExistsError
from ..interpolate import interpolate
from ..service import FactoidService

logger = logging.getLogger(__name__)

_IS_REPLY = re.compile(r"( +is)? *<reply> *")
_EXPLICIT_IS = re.compile(r" *<is> *")
_IMPLIED_IS = re.compile(r" +is +")

DEFAULT_ADDRESS_PATTERN = r"^pan(dora)?:\s*"
FALLBACK_SOMEONE = "Someone"


def parse_teach_command(
    content: str, address_pattern: Union[str, Pattern[str]] = DEFAULT_ADDRESS_PATTERN
) -> Optional[Tuple[str, str]]:
    """Split an addressed teach message into ``(trigger, response)``.

    ``pan: foo <reply> bar`` teaches the literal reply ``bar``,
    ``pan: foo <is> bar`` and ``pan: foo is bar`` both teach ``foo is bar``.
    Returns ``None`` for messages that are not addressed to the bot or carry
    no teach marker.
    """

    address = re.compile(address_pattern, re.IGNORECASE) if isinstance(address_pattern, str) else address_pattern
    matched = address.match(content)
    if matched is None:
        return None
    body = content[matched.end():]

    reply = _IS_REPLY.search(body)
    if reply is not None:
        trigger, response = body[: reply.start()], body[reply.end():]
    else:
        explicit = _EXPLICIT_IS.search(body)
        if explicit is not None:
            trigger = body[: explicit.start()]
            response = f"{trigger} is {body[explicit.end():]}"
        else:
            implied = _IMPLIED_IS.search(body)
            if implied is None:
                return None
            trigger, response = body[: implied.start()], body

    trigger, response = trigger.strip(), response.strip()
    if not trigger or not response:
        return None
    return trigger, response


class MessageHandler:
    """Base class for a link in the handler chain."""

    def __init__(self) -> None:
        self._next: Optional[MessageHandler] = None

    def set_next(self, handler: "MessageHandler") -> "MessageHandler":
        self._next = handler
        return handler

    async def pass_on(self, message: discord.Message) -> None:
        if self._next is not None:
            await self._next.handle(message)

    async def handle(self, message: discord.Message) -> None:
        raise NotImplementedError


class PingHandler(MessageHandler):
    async def handle(self, message: discord.Message) -> None:
        if message.content.strip().lower() == "ping":
            await message.channel.send("Pong!")
            return
        await self.pass_on(message)


class BananaHandler(MessageHandler):
    """Reacts to any mention of bananas and keeps the message moving."""

    def __init__(self, emoji: str = "\U0001F60D") -> None:
        super().__init__()
        self.emoji = emoji

    async def handle(self, message: discord.Message) -> None:
        if "banana" in message.content.lower():
            try:
                await message.add_reaction(self.emoji)
            except discord.HTTPException:
                logger.warning("Failed to react to message %s", getattr(message, "id", "?"))
        await self.pass_on(message)


class TeachHandler(MessageHandler):
    def __init__(
        self,
        service: FactoidService,
        address_pattern: Union[str, Pattern[str]] = DEFAULT_ADDRESS_PATTERN,
    ) -> None:
        super().__init__()
        self._service = service
        self._address = (
            re.compile(address_pattern, re.IGNORECASE) if isinstance(address_pattern, str) else address_pattern
        )

    async def handle(self, message: discord.Message) -> None:
        parsed = parse_teach_command(message.content, self._address)
        if parsed is None:
            await self.pass_on(message)
            return
        trigger, response = parsed
        try:
            self._service.teach(trigger, response)
        except ResponseExistsError:
            await message.channel.send(f'But "{trigger}" is already "{response}" \U0001F914')
            return
        except PandoraError:
            logger.exception("Failed to store response for %r", trigger)
            await message.channel.send("Sorry. Error putting into DB. \U0001F61E")
            return
        await message.channel.send(
            f'Okay, {message.author.mention}. Remembering that "{trigger}" is "{response}" \U0001F642'
        )


class RetortHandler(MessageHandler):
    """Answers with a stored response for the message text, if one exists."""

    def __init__(
        self,
        service: FactoidService,
        *,
        someone_sample_size: int = 50,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__()
        self._service = service
        self._sample_size = someone_sample_size
        # nosec B311 - member selection is not security sensitive
        self._rng = rng or random.Random()

    def pick_someone(self, message: discord.Message) -> str:
        guild = getattr(message, "guild", None)
        if guild is None:
            return FALLBACK_SOMEONE
        members = [member for member in list(guild.members)[: self._sample_size] if not member.bot]
        if not members:
            return FALLBACK_SOMEONE
        return self._rng.choice(members).mention

    async def handle(self, message: discord.Message) -> None:
        try:
            response = self._service.random_response(message.content)
        except PandoraError:
            logger.exception("Failed to look up %r", message.content)
            return
        if response is None:
            await self.pass_on(message)
            return
        try:
            text = interpolate(
                response,
                {"who": message.author.mention, "someone": lambda: self.pick_someone(message)},
            )
        except InterpolationError:
            logger.warning("Could not interpolate stored response %r", response)
            text = response
        if text.strip():
            await message.channel.send(text)


__all__ = [
    "BananaHandler",
    "MessageHandler",
    "PingHandler",
    "RetortHandler",
    "TeachHandler",
    "parse_teach_command",
]

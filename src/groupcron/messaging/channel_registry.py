"""Outbound delivery of task results to the chat that owns a task."""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable

from groupcron.infrastructure.logger import logger

INTERNAL_BLOCK = re.compile(r"<internal>[\s\S]*?</internal>")


@runtime_checkable
class Channel(Protocol):
    """A messaging platform adapter. It enforces its own length limits."""

    name: str

    async def connect(self) -> None: ...
    async def disconnect(self) -> None: ...
    def is_connected(self) -> bool: ...
    def owns_jid(self, jid: str) -> bool: ...
    async def send_message(self, jid: str, text: str) -> None: ...


def strip_internal_tags(text: str) -> str:
    """Drop <internal>...</internal> reasoning the agent keeps from the chat."""
    return INTERNAL_BLOCK.sub("", text).strip()


class ChannelRegistry:
    def __init__(self, channels: list[Channel] | None = None) -> None:
        self._channels: dict[str, Channel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: Channel) -> None:
        if channel.name in self._channels:
            raise ValueError(f'Channel "{channel.name}" is already registered')
        self._channels[channel.name] = channel

    def get_all(self) -> list[Channel]:
        return list(self._channels.values())

    def find_connected_by_jid(self, jid: str) -> Channel | None:
        for channel in self._channels.values():
            if channel.owns_jid(jid) and channel.is_connected():
                return channel
        return None

    async def send_message(self, jid: str, text: str) -> bool:
        """Deliver agent output to a chat. Returns False if nothing was sent.

        Errors raised by the channel propagate to the caller.
        """
        visible = strip_internal_tags(text)
        if not visible:
            return False
        channel = self.find_connected_by_jid(jid)
        if channel is None:
            logger.warning("No connected channel for JID", jid=jid)
            return False
        await channel.send_message(jid, visible)
        return True

    async def connect_all(self) -> None:
        for name, channel in self._channels.items():
            await channel.connect()
            logger.info("Channel connected", channel=name)

    async def disconnect_all(self) -> None:
        for name, channel in self._channels.items():
            try:
                await channel.disconnect()
            except Exception:
                logger.exception("Error disconnecting channel", channel=name)

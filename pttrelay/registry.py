"""
Channel registry: which connection is a member of which channel.

Shared by all connection handlers of the relay server, so every accessor
takes the registry lock.
"""

import logging
import threading
from typing import Iterator, Optional
from contextlib import contextmanager

from .models import Member

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """
    Mapping of channel name to members, ordered by join time.

    A member is in at most one channel at a time. Channels are created on
    first join and dropped once their last member leaves.
    """

    def __init__(self):
        self._channels: dict[str, dict[str, Member]] = {}
        self._members: dict[str, Member] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator["ChannelRegistry"]:
        """Hold the registry lock across a mutate-then-snapshot sequence."""
        with self._lock:
            yield self

    def join(self, channel_name: str, member: Member) -> Optional[str]:
        """
        Add a member to a channel.

        Joining the channel the member is already in is a no-op. Joining a
        different channel moves the member.

        Args:
            channel_name: Channel to join
            member: Member record (its id is the connection id)

        Returns:
            Name of the channel the member was moved out of, or None
        """
        with self._lock:
            previous = self._members.get(member.id)
            if previous is not None and previous.channel == channel_name:
                return None

            left = None
            if previous is not None:
                self._remove(previous)
                left = previous.channel

            if member.channel != channel_name:
                member = member.model_copy(update={"channel": channel_name})

            self._channels.setdefault(channel_name, {})[member.id] = member
            self._members[member.id] = member
            logger.debug(f"{member.name} ({member.id}) joined {channel_name}")
            return left

    def leave(self, connection_id: str) -> Optional[Member]:
        """
        Remove a member from whichever channel it is in.

        Returns:
            The removed member, or None if the connection was not registered
        """
        with self._lock:
            member = self._members.get(connection_id)
            if member is None:
                return None
            self._remove(member)
            logger.debug(f"{member.name} ({member.id}) left {member.channel}")
            return member

    def _remove(self, member: Member):
        del self._members[member.id]
        channel = self._channels.get(member.channel)
        if channel is None:
            return
        channel.pop(member.id, None)
        if not channel:
            del self._channels[member.channel]
            logger.debug(f"Channel {member.channel} is empty, removed")

    def members_of(self, channel_name: str) -> list[Member]:
        """Members of a channel in join order (empty for unknown channels)."""
        with self._lock:
            return list(self._channels.get(channel_name, {}).values())

    def channel_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            member = self._members.get(connection_id)
            return member.channel if member else None

    def member(self, connection_id: str) -> Optional[Member]:
        with self._lock:
            return self._members.get(connection_id)

    def channels(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._members

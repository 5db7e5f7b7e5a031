"""
ResumeCustomizer Pro - Cross-Tab Logout Broadcast

A logout in one tab must log out the others. Messages go over a named
broadcast channel when one is available, otherwise through a storage key
whose change event the other tabs observe.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from resumepro.client.storage import KeyValueStorage
from resumepro.logging import get_logger

logger = get_logger(__name__)

LOGOUT_CHANNEL = "rcp-auth"
LOGOUT_STORAGE_KEY = "rcp-logout"
LOGOUT_MESSAGE = {"type": "logout"}

Message = Dict[str, Any]


class BroadcastHub:
    """In-process broadcast channels; a message is not echoed to its sender."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Tuple[object, Callable[[Message], None]]]] = {}

    def subscribe(self, channel: str, owner: object, handler: Callable[[Message], None]) -> None:
        self._subscribers.setdefault(channel, []).append((owner, handler))

    def post(self, channel: str, sender: object, message: Message) -> int:
        delivered = 0
        for owner, handler in list(self._subscribers.get(channel, [])):
            if owner is sender:
                continue
            try:
                handler(dict(message))
                delivered += 1
            except Exception as e:
                logger.error("broadcast_handler_failed", channel=channel, error=str(e))
        return delivered


class LogoutBroadcaster:
    """
    Announces and receives logouts for one tab.

    Args:
        storage: Shared storage (fallback transport)
        hub: Broadcast hub; when None the storage key fallback is used
        clock: Time source for the fallback payload
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        hub: Optional[BroadcastHub] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.hub = hub
        self._clock = clock
        # storage events are not delivered to the tab that wrote the key
        self._announcing = False

    def announce(self) -> None:
        """Tell every other tab to log out."""
        try:
            if self.hub is not None:
                self.hub.post(LOGOUT_CHANNEL, self, LOGOUT_MESSAGE)
            else:
                self._announcing = True
                try:
                    self.storage.set(LOGOUT_STORAGE_KEY, str(int(self._clock() * 1000)))
                    self.storage.remove(LOGOUT_STORAGE_KEY)
                finally:
                    self._announcing = False
        except Exception as e:
            logger.warning("logout_broadcast_failed", error=str(e))

    def on_logout(self, callback: Callable[[], None]) -> None:
        """Run `callback` when another tab announces a logout."""
        if self.hub is not None:
            def handle(message: Message) -> None:
                if message.get("type") == "logout":
                    callback()

            self.hub.subscribe(LOGOUT_CHANNEL, self, handle)
        else:
            def on_change(key: str, value: Optional[str]) -> None:
                if key == LOGOUT_STORAGE_KEY and value is not None and not self._announcing:
                    callback()

            self.storage.subscribe(on_change)

"""
ResumeCustomizer Pro - Client Storage

Key-value storage shared by every "tab" of a client, the equivalent of a
browser's localStorage. Listeners receive (key, value) on every change;
value is None for removals.
"""

from typing import Callable, Dict, List, Optional, Protocol


# Persisted keys (everything else lives only in ClientAuthState)
LAST_ACTIVE_KEY = "lastActiveTime"
LOGIN_AT_KEY = "rcp_loginAt"
REDIRECT_AFTER_LOGIN_KEY = "redirectAfterLogin"
LAST_REDIRECT_KEY = "lastAuthRedirect"
REDIRECT_ATTEMPTS_KEY = "authRedirectAttempts"

CLIENT_AUTH_KEYS = (
    LAST_ACTIVE_KEY,
    LOGIN_AT_KEY,
    REDIRECT_AFTER_LOGIN_KEY,
    LAST_REDIRECT_KEY,
    REDIRECT_ATTEMPTS_KEY,
)

StorageListener = Callable[[str, Optional[str]], None]


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def subscribe(self, listener: StorageListener) -> None: ...


class MemoryStorage:
    """In-process storage; share one instance between guards to model tabs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._listeners: List[StorageListener] = []

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._emit(key, value)

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._emit(key, None)

    def subscribe(self, listener: StorageListener) -> None:
        self._listeners.append(listener)

    def keys(self) -> List[str]:
        return list(self._data)

    def _emit(self, key: str, value: Optional[str]) -> None:
        for listener in list(self._listeners):
            listener(key, value)


def get_float(storage: KeyValueStorage, key: str) -> Optional[float]:
    raw = storage.get(key)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def clear_client_auth(storage: KeyValueStorage) -> None:
    """Remove every persisted auth key."""
    for key in CLIENT_AUTH_KEYS:
        storage.remove(key)

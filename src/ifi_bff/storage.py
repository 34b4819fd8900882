# src/ifi_bff/storage.py

import typing

# Persistent (cookie with max-age) storage keys
ACCESS_TOKEN_KEY = "ifi_access_token"
REFRESH_TOKEN_KEY = "ifi_refresh_token"
USER_KEY = "ifi_user"
LEGACY_USER_KEY = "ifi_current_user"

# Tab-scoped (session cookie) storage keys
REDIRECT_COUNT_KEY = "redirect_count"
LOGIN_REDIRECT_CHECK_KEY = "login_redirect_check"


class Storage:
    """
    String key/value store with the Web Storage surface.
    One instance backs either the persistent or the tab-scoped side of a browser session.
    """

    def __init__(self, initial: typing.Optional[typing.Dict[str, str]] = None):
        self._data: typing.Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> typing.Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: typing.Any) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> typing.List[str]:
        return list(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Storage(keys={self.keys()!r})"


class TokenStore:
    """Reads the access token live from persistent storage on every call."""

    def __init__(self, storage: Storage):
        self._storage = storage

    def get_token(self) -> typing.Optional[str]:
        return self._storage.get_item(ACCESS_TOKEN_KEY) or None

    def clear(self) -> None:
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY, LEGACY_USER_KEY):
            self._storage.remove_item(key)

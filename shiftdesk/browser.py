from __future__ import annotations

import urllib.parse
from abc import ABC, abstractmethod


class SessionStorage(ABC):
    """Short-lived client-side key/value store that survives the OAuth redirect."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemorySessionStorage(SessionStorage):
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)


class Navigator(ABC):
    @abstractmethod
    def current_url(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def redirect(self, url: str) -> None:
        """Full navigation away from the application."""
        raise NotImplementedError

    @abstractmethod
    def replace_url(self, url: str) -> None:
        """Rewrite the address without a navigation or a history entry."""
        raise NotImplementedError


class MemoryNavigator(Navigator):
    def __init__(self, url: str) -> None:
        self.url = url
        self.redirects: list[str] = []

    def current_url(self) -> str:
        return self.url

    def redirect(self, url: str) -> None:
        self.redirects.append(url)

    def replace_url(self, url: str) -> None:
        self.url = url


def query_params(url: str) -> dict[str, str]:
    parsed = urllib.parse.urlparse(url)
    return {key: values[0] for key, values in urllib.parse.parse_qs(parsed.query).items()}


def remove_query_params(url: str, names: set[str]) -> str:
    parsed = urllib.parse.urlparse(url)
    kept = [
        (key, value)
        for key, value in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
        if key not in names
    ]
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(kept)))

from __future__ import annotations

from typing import Any

from ..execution.config import js_source

STORAGE_AREAS = ("localStorage", "sessionStorage")


class StorageArea:
    """One `Storage` key/value map, insertion ordered.

    Example:
        ```python
        area = StorageArea()
        area.set_item("k", "v")
        assert area.get_item("k") == "v"
        assert area.length == 1
        ```
    """

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    @property
    def length(self) -> int:
        return len(self._items)

    def get_item(self, key: str) -> str | None:
        return self._items.get(str(key))

    def set_item(self, key: str, value: str) -> None:
        self._items[str(key)] = str(value)

    def remove_item(self, key: str) -> None:
        self._items.pop(str(key), None)

    def key(self, index: int) -> str | None:
        """Return the key at `index`, or None when out of range.

        Example:
            ```python
            first = area.key(0)
            ```
        """
        try:
            position = int(index)
        except (TypeError, ValueError):
            return None
        if position < 0 or position >= len(self._items):
            return None
        return list(self._items)[position]

    def clear(self) -> None:
        self._items.clear()

    def keys(self) -> list[str]:
        return list(self._items)


class StorageShim:
    """`localStorage` and `sessionStorage`, independent and fresh for every call.

    Example:
        ```python
        storage = StorageShim()
        storage.install(sandbox)
        assert storage.areas["localStorage"].length == 0
        ```
    """

    def __init__(self) -> None:
        self.areas: dict[str, StorageArea] = {name: StorageArea() for name in STORAGE_AREAS}

    def _area(self, name: str) -> StorageArea:
        return self.areas[str(name)]

    def install(self, sandbox: Any) -> None:
        """Expose the storage operations and define both storage globals.

        Example:
            ```python
            storage.install(sandbox)
            ```
        """
        sandbox.expose("storage_get", lambda area, key: self._area(area).get_item(key))
        sandbox.expose("storage_set", lambda area, key, value: self._area(area).set_item(key, value))
        sandbox.expose("storage_remove", lambda area, key: self._area(area).remove_item(key))
        sandbox.expose("storage_key", lambda area, index: self._area(area).key(index))
        sandbox.expose("storage_clear", lambda area: self._area(area).clear())
        sandbox.expose("storage_length", lambda area: self._area(area).length)
        sandbox.expose("storage_keys", lambda area: self._area(area).keys())
        sandbox.evaluate(js_source("storage"))
        sandbox.capabilities.claim(*STORAGE_AREAS, "Storage", owner="storage")

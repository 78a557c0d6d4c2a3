from collections.abc import Callable, Iterable, Iterator, MutableMapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value collection.

    Iteration order follows insertion but callers must not rely on it;
    sort for display.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> V | None:
        return self._store.pop(key, None)

    def delete_where(self, predicate: Callable[[V], bool]) -> list[V]:
        """Remove every value matching ``predicate`` and return them."""
        doomed = [key for key, value in self._store.items() if predicate(value)]
        return [self._store.pop(key) for key in doomed]

    def replace_all(self, items: Iterable[tuple[K, V]]) -> None:
        self._store = dict(items)

    def all(self) -> list[V]:
        return list(self._store.values())

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)

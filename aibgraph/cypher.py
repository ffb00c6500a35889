"""Minimal interfaces for running Cypher queries against a Bolt-speaking graph database."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Optional, Protocol


class Record:
    """One row of a query result: column names paired with their values."""

    __slots__ = ("keys", "values")

    def __init__(self, keys: Iterable[str], values: Iterable[Any]) -> None:
        self.keys: tuple[str, ...] = tuple(keys)
        self.values: tuple[Any, ...] = tuple(values)
        if len(self.keys) != len(self.values):
            raise ValueError(
                f"record has {len(self.keys)} keys but {len(self.values)} values"
            )

    def get(self, key: str) -> Any:
        """Return the value of column ``key``, or None if the column is absent."""
        try:
            return self.values[self.keys.index(key)]
        except ValueError:
            return None

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def as_dict(self) -> dict[str, Any]:
        """Return the row as a mapping of column name to value."""
        return dict(zip(self.keys, self.values))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.keys == other.keys and self.values == other.values

    def __repr__(self) -> str:
        return f"Record({self.as_dict()!r})"


class ResultIterator(Protocol):
    """The records of a query; iterating raises if the server reports an error."""

    def __iter__(self) -> Iterator[Record]: ...


class Session(Protocol):
    """A session able to run Cypher statements."""

    def run(self, cypher: str, params: Optional[dict[str, Any]]) -> ResultIterator: ...

    def close(self) -> None: ...


SessionFactory = Callable[[], Session]
"""Creates a fresh session for one unit of work."""
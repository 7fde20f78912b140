"""Most-recent-wins merge of records gathered from overlapping fetches."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

IdentityKey = Callable[[Any], str]
Recency = Callable[[Any], float]


class MergeAction(str, Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    KEPT = "kept"


@dataclass
class MergeStats:
    inserted: int = 0
    replaced: int = 0
    kept: int = 0

    @property
    def seen(self) -> int:
        return self.inserted + self.replaced + self.kept


class MergedSet:
    """Identity key → most recent record, plus the recency it was stored with."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self.stats = MergeStats()
        self._frozen = False

    def apply(self, key: str, recency: float, record: Any) -> MergeAction:
        if self._frozen:
            raise RuntimeError("MergedSet is frozen")
        current = self._entries.get(key)
        if current is None:
            self._entries[key] = (recency, record)
            self.stats.inserted += 1
            return MergeAction.INSERTED
        if recency > current[0]:
            self._entries[key] = (recency, record)
            self.stats.replaced += 1
            return MergeAction.REPLACED
        self.stats.kept += 1
        return MergeAction.KEPT

    def freeze(self) -> "MergedSet":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def values(self) -> list[Any]:
        return [record for _, record in self._entries.values()]

    def keys(self) -> list[str]:
        return list(self._entries)

    def items(self) -> list[tuple[str, Any]]:
        return [(key, record) for key, (_, record) in self._entries.items()]

    def recency_of(self, key: str) -> float:
        return self._entries[key][0]

    def as_dict(self) -> dict[str, Any]:
        return dict(self.items())

    def __getitem__(self, key: str) -> Any:
        return self._entries[key][1]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MergedSet):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"MergedSet(size={len(self)})"


@dataclass
class Deduplicator:
    """Fold record batches into a :class:`MergedSet` using adapter callables.

    Within a batch order matters only for ties: on equal recency the record
    seen first stays. Merging is pure apart from the target set, so it can be
    repeated or continued incrementally via ``into``.
    """

    identity_key: IdentityKey
    recency: Recency
    skip_unkeyed: bool = True
    skipped: int = field(default=0, init=False)

    def merge(
        self, batches: Iterable[Iterable[Any]], into: MergedSet | None = None
    ) -> MergedSet:
        merged = into if into is not None else MergedSet()
        for batch in batches:
            for record in batch:
                key = self.identity_key(record)
                if not key and self.skip_unkeyed:
                    self.skipped += 1
                    continue
                merged.apply(key, self.recency(record), record)
        return merged


def _lookup(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def key_from_fields(fields: Sequence[str], separator: str = "|") -> IdentityKey:
    """Composite identity key such as ``portfolioId|orderId|symbol``."""

    names = tuple(fields)
    if not names:
        raise ValueError("identity key needs at least one field")

    def _key(record: Any) -> str:
        parts = []
        for name in names:
            value = _lookup(record, name)
            parts.append("" if value is None else str(value))
        if not any(parts):
            return ""
        return separator.join(parts)

    return _key


def recency_from_field(name: str, default: float = 0.0) -> Recency:
    """Read a numeric recency (usually an epoch-ms timestamp) from ``name``."""

    def _recency(record: Any) -> float:
        value = _lookup(record, name)
        if value in (None, ""):
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    return _recency


__all__ = [
    "Deduplicator",
    "IdentityKey",
    "MergeAction",
    "MergeStats",
    "MergedSet",
    "Recency",
    "key_from_fields",
    "recency_from_field",
]

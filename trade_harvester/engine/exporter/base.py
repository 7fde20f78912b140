"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Mapping


class BaseExporter(ABC):
    """Uniform contract for writing merged records somewhere durable."""

    @abstractmethod
    def export(self, record: Mapping) -> None:
        """Persist a single record."""

    def export_many(self, records: Iterable[Mapping]) -> int:
        count = 0
        for record in records:
            self.export(record)
            count += 1
        return count

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self) -> "BaseExporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()
        self.close()


__all__ = ["BaseExporter"]

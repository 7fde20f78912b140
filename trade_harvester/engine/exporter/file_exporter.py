"""File based exporter writing CSV or JSON lines."""

from __future__ import annotations

import csv
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from .base import BaseExporter

SUPPORTED_FORMATS = ("csv", "json")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


class FileExporter(BaseExporter):
    """Write records of one job run to ``<job>-<run_tag>.<ext>``.

    CSV uses ``fields`` as a fixed header when given, otherwise the sorted
    keys of the first record. Keys outside the header are dropped.
    """

    def __init__(
        self,
        output_dir: Path,
        job_name: str,
        fmt: str,
        run_tag: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> None:
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        self.output_dir = output_dir
        self.job_name = job_name
        self.format = fmt
        self.fields = list(fields) if fields else None
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.run_tag = run_tag or datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^0-9A-Za-z_-]+", "_", job_name.strip()) or "job"
        self.path = self.output_dir / f"{slug}-{self.run_tag}.{self._extension}"
        self._file = self.path.open("w", encoding="utf-8", newline="")
        self._csv_writer: Optional[csv.DictWriter] = None
        self.count = 0

    @property
    def _extension(self) -> str:
        return "jsonl" if self.format == "json" else "csv"

    def export(self, record: Mapping) -> None:
        if self.format == "json":
            json.dump(dict(record), self._file, ensure_ascii=False, default=str)
            self._file.write("\n")
        else:
            if self._csv_writer is None:
                fieldnames = self.fields or sorted(record.keys())
                self._csv_writer = csv.DictWriter(
                    self._file, fieldnames=fieldnames, extrasaction="ignore"
                )
                self._csv_writer.writeheader()
            self._csv_writer.writerow({key: _cell(value) for key, value in record.items()})
        self.count += 1

    def flush(self) -> None:
        if not self._file.closed:
            self._file.flush()

    def close(self) -> None:
        if self._file.closed:
            return
        # An empty CSV still gets its header when the columns are known.
        if self.format == "csv" and self._csv_writer is None and self.fields:
            csv.DictWriter(self._file, fieldnames=self.fields).writeheader()
        self._file.close()


__all__ = ["FileExporter", "SUPPORTED_FORMATS"]

"""Configuration loading helpers for Trade-Harvester."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml

from ..errors import JobNotFoundError
from .models import GlobalConfig, JobConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
JOB_CONFIG_SUFFIX = ".yaml"
HOME_ENV = "TRADE_HARVESTER_HOME"


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


def project_root() -> Path:
    env_root = os.environ.get(HOME_ENV)
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path.cwd().resolve()


@dataclass(slots=True)
class ConfigLocator:
    """Resolve data, jobs, outputs and log directories from the project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    jobs_dir: Path | None = None
    outputs_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        root = (self.project_root or project_root()).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.jobs_dir = (self.data_dir / "jobs").resolve()
        self.outputs_dir = (self.data_dir / "outputs").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.jobs_dir, self.outputs_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def resolve(self, path: Path) -> Path:
        """Anchor relative paths from config files at the project root."""

        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            global_cfg = GlobalConfig.model_validate(_read_file(path))
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = global_cfg
        return global_cfg

    def save_global_config(self, config: GlobalConfig) -> None:
        _write_file(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global_cache = config

    def outputs_dir(self) -> Path:
        return self.locator.resolve(self.load_global_config().outputs_dir)

    # ------------------------------------------------------------------
    # Job configuration helpers
    # ------------------------------------------------------------------
    def job_path(self, job_name: str) -> Path:
        return self.locator.jobs_dir / f"{_slugify(job_name)}{JOB_CONFIG_SUFFIX}"

    def list_job_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.jobs_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_jobs(self) -> list[JobConfig]:
        return [self.load_job(path) for path in self.list_job_files()]

    def load_job(self, identifier: str | Path) -> JobConfig:
        path = identifier if isinstance(identifier, Path) else self._find_job(identifier)
        if path is None or not path.exists():
            raise JobNotFoundError(f"Job configuration not found: {identifier}")
        return JobConfig.model_validate(_read_file(path))

    def save_job(self, config: JobConfig) -> Path:
        path = self.job_path(config.name)
        _write_file(path, config.model_dump(mode="json"))
        return path

    def delete_job(self, job_name: str) -> None:
        path = self._find_job(job_name)
        if path is not None and path.exists():
            path.unlink()

    def _find_job(self, job_name: str) -> Path | None:
        slug = _slugify(job_name)
        for suffix in CONFIG_EXTENSIONS:
            candidate = self.locator.jobs_dir / f"{slug}{suffix}"
            if candidate.exists():
                return candidate
        return None


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository", "HOME_ENV", "project_root"]

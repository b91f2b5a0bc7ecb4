"""
cleanroom-orchestrator: append-only spec version store.

File: src/cleanroom_orchestrator/knowledge_plane/spec_versions.py

Purpose
- Keep every version of the instructions given to a task, one YAML file per
  version under ``<specs_root>/<task_id>/v<N>.yaml``.

Functional requirements
- Version numbers start at 1 and grow by one from the highest stored version.
- A stored version is never overwritten; files are created exclusively.
- History reads skip unreadable files with a warning instead of failing.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, cast

import structlog
import yaml

from cleanroom_orchestrator.domain.models import SpecVersion, utc_now
from cleanroom_orchestrator.utils.fs import exclusive_write

PathLike = str | os.PathLike[str]

_VERSION_FILE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^v(\d+)\.yaml$")
_TASK_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True, slots=True)
class SpecComparison:
    v1: SpecVersion
    v2: SpecVersion
    size_diff: int
    time_diff_seconds: float


class SpecVersionStore:
    """Filesystem-backed version history per task."""

    def __init__(self, specs_root: PathLike, *, logger: Any | None = None) -> None:
        self._root = Path(specs_root)
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def root(self) -> Path:
        return self._root

    def save_spec(self, task_id: str, content: str, reason: str) -> int:
        """Store ``content`` as the next version for ``task_id`` and return its number."""

        task_dir = self._task_dir(task_id)
        versions = self.get_versions(task_id)
        version = (versions[-1] if versions else 0) + 1
        record = SpecVersion(version=version, content=content, timestamp=utc_now(), reason=reason)

        rendered = yaml.safe_dump(
            record.to_dict(),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=120,
        )
        exclusive_write(task_dir / f"v{version}.yaml", rendered)

        self._logger.info("spec_version_saved", task_id=task_id, version=version, reason=reason)
        return version

    def load_spec(self, task_id: str, version: int) -> SpecVersion:
        path = self._task_dir(task_id) / f"v{version}.yaml"
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
        except yaml.YAMLError as exc:
            raise ValueError(f"{path}: invalid YAML ({exc})") from exc
        return SpecVersion.from_dict(loaded, path=f"{task_id}/v{version}")

    def load_latest_spec(self, task_id: str) -> SpecVersion | None:
        versions = self.get_versions(task_id)
        if not versions:
            return None
        return self.load_spec(task_id, versions[-1])

    def get_versions(self, task_id: str) -> list[int]:
        task_dir = self._task_dir(task_id)
        if not task_dir.is_dir():
            return []
        versions: list[int] = []
        for entry in task_dir.iterdir():
            match = _VERSION_FILE_PATTERN.match(entry.name)
            if match and entry.is_file():
                versions.append(int(match.group(1)))
        return sorted(versions)

    def get_history(self, task_id: str) -> list[SpecVersion]:
        history: list[SpecVersion] = []
        for version in self.get_versions(task_id):
            try:
                history.append(self.load_spec(task_id, version))
            except (OSError, ValueError) as exc:
                self._logger.warning(
                    "spec_version_unreadable",
                    task_id=task_id,
                    version=version,
                    error=str(exc),
                )
        return history

    def compare_versions(self, task_id: str, version1: int, version2: int) -> SpecComparison:
        first = self.load_spec(task_id, version1)
        second = self.load_spec(task_id, version2)
        return SpecComparison(
            v1=first,
            v2=second,
            size_diff=len(second.content) - len(first.content),
            time_diff_seconds=(second.timestamp - first.timestamp).total_seconds(),
        )

    def _task_dir(self, task_id: str) -> Path:
        if not _TASK_ID_PATTERN.match(task_id):
            raise ValueError(f"invalid task id for spec storage: {task_id!r}")
        return self._root / task_id


__all__ = ["SpecComparison", "SpecVersionStore"]

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Dict, Optional

import diskcache

from tfaction.metric import artifact_counter

logger = logging.getLogger("tfaction")

SECONDS_PER_DAY = 24 * 60 * 60


class ArtifactError(Exception):
    pass


class ArtifactWriteError(ArtifactError):
    pass


class ArtifactNotFoundError(ArtifactError):
    pass


class ArtifactReadError(ArtifactError):
    pass


class PlanArtifactStore:
    """
    Keeps plan files between the plan and the apply of a project.

    Entries live in a diskcache directory and are keyed by
    ``<prefix>-<project name>`` only, so one store is meant to be scoped to a
    single pull request by choosing its directory. Each entry maps file names
    to their content and expires after the retention window.
    """

    def __init__(
        self,
        directory: Path | str,
        prefix: str = "tfplan",
        retention_days: Optional[float] = 90,
    ):
        self.directory = Path(directory)
        self.prefix = prefix
        self.retention_days = retention_days

    def key(self, project_name: str) -> str:
        return f"{self.prefix}-{project_name}"

    @property
    def expire(self) -> Optional[float]:
        if self.retention_days is None:
            return None
        return self.retention_days * SECONDS_PER_DAY

    def _open(self) -> diskcache.Cache:
        logger.debug("Opening artifact dir: %s", self.directory)
        return diskcache.Cache(str(self.directory))

    def save(self, project_name: str, plan_path: Path | str) -> str:
        key = self.key(project_name)
        plan_path = Path(plan_path)
        if not plan_path.is_file():
            artifact_counter.labels(operation="save", result="missing_file").inc()
            raise ArtifactWriteError(f"Plan file not found: {plan_path}")

        logger.info("Saving plan file %s as artifact %s", plan_path, key)
        try:
            payload = {
                "files": {key: plan_path.read_bytes()},
                "saved_at": datetime.now(timezone.utc),
            }
            with self._open() as cache:
                cache.set(key, payload, expire=self.expire)
        except (OSError, diskcache.Timeout) as e:
            artifact_counter.labels(operation="save", result="error").inc()
            raise ArtifactWriteError(
                f"Failed to store plan artifact {key}: {e}"
            ) from e

        artifact_counter.labels(operation="save", result="ok").inc()
        logger.info(
            "Plan artifact %s stored, size: %d bytes",
            key,
            len(payload["files"][key]),
        )
        return key

    def load(self, project_name: str, destination: Path | str) -> Path:
        key = self.key(project_name)
        logger.info("Loading plan artifact %s", key)

        with self._open() as cache:
            payload = cache.get(key)

        if payload is None:
            artifact_counter.labels(operation="load", result="not_found").inc()
            raise ArtifactNotFoundError(f"Artifact not found: {key}")

        files: Dict[str, bytes] = payload.get("files", {})
        if key not in files:
            artifact_counter.labels(operation="load", result="missing_file").inc()
            raise ArtifactReadError(
                f"Artifact {key} does not contain the expected plan file {key}"
            )

        destination = Path(destination)
        plan_path = destination / key
        try:
            destination.mkdir(parents=True, exist_ok=True)
            plan_path.write_bytes(files[key])
        except OSError as e:
            artifact_counter.labels(operation="load", result="error").inc()
            raise ArtifactReadError(
                f"Failed to write plan artifact {key} to {plan_path}: {e}"
            ) from e

        artifact_counter.labels(operation="load", result="ok").inc()
        logger.info("Plan file downloaded to: %s", plan_path)
        return plan_path

    def saved_at(self, project_name: str) -> Optional[datetime]:
        with self._open() as cache:
            payload = cache.get(self.key(project_name))
        if payload is None:
            return None
        return payload.get("saved_at")

    def discard(self, project_name: str) -> bool:
        with self._open() as cache:
            removed = cache.delete(self.key(project_name))
        if removed:
            logger.debug("Discarded plan artifact %s", self.key(project_name))
        return removed

    def clear(self) -> int:
        with self._open() as cache:
            count = cache.clear()
        logger.info("Cleared %d plan artifact(s) from %s", count, self.directory)
        return count

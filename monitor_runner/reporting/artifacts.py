"""Failure Artifact Archival.

The archival hook runs only for failed runs (non-zero exit or killed by
timeout). It collects the files matching the configured artifacts glob and
the image artifact, stores them next to a JSON dump of the outcome, and
returns the URLs that the metric line carries.
"""

from __future__ import annotations

import glob
import json
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from monitor_runner.core.config import ArtifactsConfig, RuntimeConfig
from monitor_runner.core.outcome import RunOutcome
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class ArtifactUrls:
    """Where a failed run's artifacts ended up (empty when nothing was kept)."""

    artifact_url: str = ""
    image_url: str = ""


class ArtifactHook(ABC):
    """Collaborator invoked with the identity of a failed run."""

    @abstractmethod
    def archive(self, config: RuntimeConfig, outcome: RunOutcome) -> ArtifactUrls:
        """Archive the artifacts of a failed run.

        Args:
            config: Runtime configuration of the probe
            outcome: Outcome of the failed run

        Returns:
            URLs of the archived artifacts

        """


class NullArtifactHook(ArtifactHook):
    """Hook used when no artifact source is configured."""

    def archive(self, config: RuntimeConfig, outcome: RunOutcome) -> ArtifactUrls:
        return ArtifactUrls()


def _safe_name(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value).strip("._") or "unnamed"


class LocalArtifactArchiver(ArtifactHook):
    """Copies failure artifacts into a per-run directory.

    Layout::

        <archive_dir>/<app>/<name>/<run_id>/
            outcome.json
            artifacts/<matched files>
            <image file>
    """

    def __init__(self, artifacts: ArtifactsConfig):
        """Initialize archiver.

        Args:
            artifacts: Artifact sources and archive directory

        """
        self.artifacts = artifacts

    def run_dir(self, config: RuntimeConfig, outcome: RunOutcome) -> Path:
        """Directory holding the artifacts of one run."""
        return (
            self.artifacts.archive_dir
            / _safe_name(config.app_name)
            / _safe_name(config.test_name)
            / outcome.run_id
        )

    def archive(self, config: RuntimeConfig, outcome: RunOutcome) -> ArtifactUrls:
        if not outcome.failed:
            logger.debug("archive_skipped_success", run_id=outcome.run_id)
            return ArtifactUrls()

        run_dir = self.run_dir(config, outcome)
        run_dir.mkdir(parents=True, exist_ok=True)

        artifact_url = ""
        if self.artifacts.artifact_glob:
            copied = self._copy_matches(
                self.artifacts.artifact_glob, run_dir / "artifacts"
            )
            if copied:
                artifact_url = (run_dir / "artifacts").resolve().as_uri()

        image_url = ""
        if self.artifacts.image_path:
            image_url = self._copy_image(self.artifacts.image_path, run_dir)

        record = {
            "app": config.app_name,
            "name": config.test_name,
            "command": config.command_display,
            "failed": outcome.failed,
            "outcome": outcome.to_dict(),
            "artifact_url": artifact_url,
            "image_url": image_url,
        }
        with open(run_dir / "outcome.json", "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)

        logger.info(
            "artifacts_archived",
            run_id=outcome.run_id,
            run_dir=str(run_dir),
            artifact_url=artifact_url,
            image_url=image_url,
        )
        return ArtifactUrls(artifact_url=artifact_url, image_url=image_url)

    def _copy_matches(self, pattern: str, dest_dir: Path) -> list[Path]:
        matches = sorted(
            Path(match) for match in glob.glob(pattern, recursive=True)
        )
        files = [path for path in matches if path.is_file()]
        if not files:
            logger.info("no_artifacts_matched", pattern=pattern)
            return []

        dest_dir.mkdir(parents=True, exist_ok=True)
        copied: list[Path] = []
        for index, source in enumerate(files):
            target = dest_dir / source.name
            if target.exists():
                # same file name from different directories
                target = dest_dir / f"{index}_{source.name}"
            try:
                shutil.copy2(source, target)
            except OSError as e:
                logger.warning("artifact_copy_failed", path=str(source), error=str(e))
                continue
            copied.append(target)
        return copied

    def _copy_image(self, image_path: Path, run_dir: Path) -> str:
        if not image_path.is_file():
            logger.warning("image_artifact_missing", path=str(image_path))
            return ""
        target = run_dir / image_path.name
        try:
            shutil.copy2(image_path, target)
        except OSError as e:
            logger.warning("image_copy_failed", path=str(image_path), error=str(e))
            return ""
        return target.resolve().as_uri()


def create_artifact_hook(artifacts: ArtifactsConfig) -> ArtifactHook:
    """Pick the archiver for the configured artifact sources."""
    if not artifacts.enabled:
        return NullArtifactHook()
    return LocalArtifactArchiver(artifacts)

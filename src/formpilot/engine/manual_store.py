"""Manual storage: lookup, upsert, and creation helpers.

ManualStore is the read/write contract the engine depends on. Concrete
stores only implement raw persistence (get_all/get/save/remove); ranking and
URL matching live here so every backend behaves identically.

Two implementations ship with the engine:
  - FileManualStore: one {id}.json per manual in a directory
  - MemoryManualStore: dict-backed, for tests and ephemeral workers
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from formpilot.engine.errors import InvalidManualError
from formpilot.engine.types import Manual, ManualStep, new_manual, parse_manual
from formpilot.engine.url_patterns import GENERIC_PLATFORM, url_matches_pattern, url_to_pattern

log = logging.getLogger(__name__)


class ManualStore(ABC):
    """Persistent index of manuals keyed by url pattern + task type + platform."""

    @abstractmethod
    def get_all(self) -> list[Manual]:
        """Return every readable manual. Unreadable entries are skipped."""
        ...

    @abstractmethod
    def get(self, manual_id: str) -> Manual | None:
        ...

    @abstractmethod
    def save(self, manual: Manual) -> None:
        """Upsert keyed by manual.id. Last writer wins."""
        ...

    @abstractmethod
    def remove(self, manual_id: str) -> bool:
        ...

    # -- lookup -------------------------------------------------------------

    def lookup(self, url: str, task_type: str, platform: str | None = None) -> Manual | None:
        """Best manual for *url*/*task_type*, or None.

        Candidates must match the task exactly, belong to *platform* or the
        generic platform, have positive health, and match the URL pattern.
        The highest health wins; ties keep store iteration order.
        """
        candidates = [
            m
            for m in self.get_all()
            if m.task_pattern == task_type
            and (platform is None or m.platform in (platform, GENERIC_PLATFORM))
            and m.health_score > 0
            and url_matches_pattern(url, m.url_pattern)
        ]
        if not candidates:
            log.debug("No manual for %s [%s/%s]", url, task_type, platform or "*")
            return None

        # sorted() is stable, so equal scores keep iteration order.
        best = sorted(candidates, key=lambda m: m.health_score, reverse=True)[0]
        log.info(
            "Manual %s matched %s (pattern=%s, health=%.2f)",
            best.id, url, best.url_pattern, best.health_score,
        )
        return best

    # -- creation helpers -------------------------------------------------

    def save_from_trace(
        self,
        steps: list[ManualStep],
        url: str,
        task_type: str,
        platform: str | None = None,
    ) -> Manual:
        """Persist a recorded trace as a new manual (health 1.0)."""
        manual = new_manual(
            steps,
            url_pattern=url_to_pattern(url),
            task_pattern=task_type,
            platform=platform or GENERIC_PLATFORM,
            source="recorded",
        )
        self.save(manual)
        log.info("Saved recorded manual %s (%d steps) for %s", manual.id, len(steps), manual.url_pattern)
        return manual

    def save_from_catalog(
        self,
        steps: list[ManualStep],
        task_type: str,
        url_pattern: str | None = None,
        url: str | None = None,
        platform: str | None = None,
    ) -> Manual:
        """Persist an imported catalog manual (health 0.8)."""
        if url_pattern is None:
            url_pattern = url_to_pattern(url) if url else "*"
        manual = new_manual(
            steps,
            url_pattern=url_pattern,
            task_pattern=task_type,
            platform=platform or GENERIC_PLATFORM,
            source="imported",
        )
        self.save(manual)
        log.info("Saved imported manual %s (%d steps) for %s", manual.id, len(steps), url_pattern)
        return manual


# ---------------------------------------------------------------------------
# Filesystem store
# ---------------------------------------------------------------------------


class FileManualStore(ManualStore):
    """Stores each manual as <directory>/<id>.json."""

    def __init__(self, directory: Path, seed_dir: Path | None = None) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        if seed_dir is not None:
            self._seed_bundled(Path(seed_dir))

    def _path_for(self, manual_id: str) -> Path:
        # Ids become filenames; refuse anything that could escape the directory.
        if not manual_id or "/" in manual_id or "\\" in manual_id or manual_id.startswith("."):
            raise ValueError(f"Unsafe manual id: {manual_id!r}")
        return self.directory / f"{manual_id}.json"

    def _seed_bundled(self, seed_dir: Path) -> None:
        """Copy bundled cookbooks in without overwriting existing files."""
        if not seed_dir.is_dir():
            return
        copied = 0
        for src in sorted(seed_dir.glob("*.json")):
            try:
                manual = parse_manual(src.read_text(encoding="utf-8"), source=str(src))
                dest = self._path_for(manual.id)
            except (OSError, InvalidManualError, ValueError) as e:
                log.warning("Skipping bundled cookbook %s: %s", src.name, e)
                continue
            if not dest.exists():
                shutil.copyfile(src, dest)
                copied += 1
        if copied:
            log.info("Seeded %d bundled cookbook(s) from %s", copied, seed_dir)

    def get_all(self) -> list[Manual]:
        manuals: list[Manual] = []
        try:
            files = sorted(self.directory.glob("*.json"))
        except OSError as e:
            log.warning("Cannot list manuals in %s: %s", self.directory, e)
            return []

        for path in files:
            try:
                manuals.append(parse_manual(path.read_text(encoding="utf-8"), source=path.name))
            except (OSError, InvalidManualError) as e:
                log.warning("Skipping unreadable manual %s: %s", path.name, e)
        return manuals

    def get(self, manual_id: str) -> Manual | None:
        try:
            path = self._path_for(manual_id)
            return parse_manual(path.read_text(encoding="utf-8"), source=path.name)
        except FileNotFoundError:
            return None
        except (OSError, InvalidManualError, ValueError) as e:
            log.warning("Cannot read manual %s: %s", manual_id, e)
            return None

    def save(self, manual: Manual) -> None:
        path = self._path_for(manual.id)
        fd, tmp = tempfile.mkstemp(prefix=f".{manual.id}.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(manual.to_json())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def remove(self, manual_id: str) -> bool:
        try:
            self._path_for(manual_id).unlink()
            return True
        except (FileNotFoundError, ValueError):
            return False


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryManualStore(ManualStore):
    """Dict-backed store. Keeps insertion order for tie-breaking."""

    def __init__(self, manuals: list[Manual] | None = None) -> None:
        self._manuals: dict[str, dict] = {}
        for m in manuals or []:
            self.save(m)

    def get_all(self) -> list[Manual]:
        manuals: list[Manual] = []
        for manual_id, doc in self._manuals.items():
            try:
                manuals.append(parse_manual(doc, source=manual_id))
            except InvalidManualError as e:
                log.warning("Skipping unreadable manual %s: %s", manual_id, e)
        return manuals

    def get(self, manual_id: str) -> Manual | None:
        doc = self._manuals.get(manual_id)
        if doc is None:
            return None
        try:
            return parse_manual(doc, source=manual_id)
        except InvalidManualError as e:
            log.warning("Cannot read manual %s: %s", manual_id, e)
            return None

    def save(self, manual: Manual) -> None:
        # Stored as plain documents so callers cannot mutate stored state.
        self._manuals[manual.id] = manual.to_dict()

    def save_raw(self, manual_id: str, document: dict) -> None:
        """Store an unvalidated document (used to simulate corrupted rows)."""
        self._manuals[manual_id] = document

    def remove(self, manual_id: str) -> bool:
        return self._manuals.pop(manual_id, None) is not None


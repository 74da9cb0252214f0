"""Tests for manual lookup, persistence and creation helpers.

@file test_manual_store.py
@description Ranking and filtering in ManualStore.lookup, upsert semantics,
             corrupt-entry tolerance, FileManualStore atomic writes and
             bundled-cookbook seeding, and save_from_trace / save_from_catalog.
"""

from __future__ import annotations


import json

import pytest

from formpilot import config
from formpilot.engine.manual_store import FileManualStore, MemoryManualStore
from formpilot.engine.types import LocatorDescriptor, ManualStep

WORKDAY_URL = "https://acme.myworkdayjobs.com/en-US/careers/job/NYC/apply"


def _steps():
    return [ManualStep(order=0, locator=LocatorDescriptor(css="#email"), action="fill", value="{{email}}")]


# ---------------------------------------------------------------------------
# 1. Lookup
# ---------------------------------------------------------------------------


class TestLookup:
    """Only matching, healthy manuals are returned; highest health wins."""

    def test_returns_matching_manual(self, manual_factory):
        m = manual_factory()
        store = MemoryManualStore([m])
        assert store.lookup(WORKDAY_URL, "apply").id == m.id

    def test_no_match_returns_none(self, manual_factory):
        store = MemoryManualStore([manual_factory()])
        assert store.lookup("https://jobs.lever.co/acme/123", "apply") is None

    def test_task_must_match_exactly(self, manual_factory):
        store = MemoryManualStore([manual_factory(task_pattern="apply")])
        assert store.lookup(WORKDAY_URL, "apply-referral") is None

    def test_highest_health_wins(self, manual_factory):
        low = manual_factory(health_score=0.4)
        high = manual_factory(health_score=0.9)
        store = MemoryManualStore([low, high])
        assert store.lookup(WORKDAY_URL, "apply").id == high.id

    def test_ties_keep_iteration_order(self, manual_factory):
        first = manual_factory(health_score=0.7)
        second = manual_factory(health_score=0.7)
        store = MemoryManualStore([first, second])
        assert store.lookup(WORKDAY_URL, "apply").id == first.id

    def test_zero_health_is_never_returned(self, manual_factory):
        store = MemoryManualStore([manual_factory(health_score=0.0)])
        assert store.lookup(WORKDAY_URL, "apply") is None

    def test_platform_filter_accepts_generic(self, manual_factory):
        generic = manual_factory(platform="other")
        store = MemoryManualStore([generic, manual_factory(platform="greenhouse")])
        assert store.lookup(WORKDAY_URL, "apply", platform="workday").id == generic.id

    def test_platform_filter_excludes_other_platforms(self, manual_factory):
        store = MemoryManualStore([manual_factory(platform="greenhouse")])
        assert store.lookup(WORKDAY_URL, "apply", platform="workday") is None

    def test_corrupt_entries_are_skipped(self, manual_factory):
        good = manual_factory(health_score=0.5)
        store = MemoryManualStore([good])
        store.save_raw("broken", {"url_pattern": "*", "steps": "nope"})
        assert [m.id for m in store.get_all()] == [good.id]
        assert store.get("broken") is None
        assert store.lookup(WORKDAY_URL, "apply").id == good.id


# ---------------------------------------------------------------------------
# 2. Memory store persistence
# ---------------------------------------------------------------------------


class TestMemoryStore:
    """Upsert by id, last writer wins."""

    def test_save_is_idempotent(self, manual_factory):
        m = manual_factory()
        store = MemoryManualStore()
        store.save(m)
        store.save(m)
        assert len(store.get_all()) == 1
        assert store.get(m.id) == m

    def test_resave_overwrites(self, manual_factory):
        m = manual_factory(health_score=1.0)
        store = MemoryManualStore([m])
        store.save(m.model_copy(update={"health_score": 0.2}))
        assert store.get(m.id).health_score == 0.2

    def test_stored_state_is_not_aliased(self, manual_factory):
        m = manual_factory()
        store = MemoryManualStore([m])
        m.health_score = 0.1
        assert store.get(m.id).health_score == 1.0

    def test_remove(self, manual_factory):
        m = manual_factory()
        store = MemoryManualStore([m])
        assert store.remove(m.id) is True
        assert store.remove(m.id) is False
        assert store.get(m.id) is None


# ---------------------------------------------------------------------------
# 3. File store
# ---------------------------------------------------------------------------


class TestFileStore:
    """One JSON file per manual; writes go through a temp file."""

    def test_round_trip_on_disk(self, tmp_path, manual_factory):
        store = FileManualStore(tmp_path / "manuals")
        m = manual_factory()
        store.save(m)

        path = tmp_path / "manuals" / f"{m.id}.json"
        assert path.exists()
        assert json.loads(path.read_text())["id"] == m.id
        assert FileManualStore(tmp_path / "manuals").get(m.id) == m

    def test_no_temp_files_left_behind(self, tmp_path, manual_factory):
        store = FileManualStore(tmp_path)
        store.save(manual_factory())
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []

    def test_corrupt_file_skipped(self, tmp_path, manual_factory):
        store = FileManualStore(tmp_path)
        good = manual_factory()
        store.save(good)
        (tmp_path / "bad.json").write_text("{not json")
        assert [m.id for m in store.get_all()] == [good.id]
        assert store.get("bad") is None

    def test_missing_manual_returns_none(self, tmp_path):
        assert FileManualStore(tmp_path).get("nope") is None

    @pytest.mark.parametrize("bad_id", ["../escape", "a/b", ".hidden", ""])
    def test_unsafe_ids_rejected(self, tmp_path, manual_factory, bad_id):
        store = FileManualStore(tmp_path)
        with pytest.raises(ValueError, match="Unsafe manual id"):
            store.save(manual_factory(id=bad_id))
        assert store.remove(bad_id) is False

    def test_seeds_bundled_cookbooks(self, tmp_path):
        store = FileManualStore(tmp_path, seed_dir=config.SEED_DIR)
        seeded = store.get("greenhouse-apply-v1")
        assert seeded is not None
        assert seeded.source == "template"
        assert store.lookup("https://boards.greenhouse.io/acme/jobs/4012345", "apply").id == seeded.id

    def test_seeding_never_overwrites_existing(self, tmp_path):
        store = FileManualStore(tmp_path, seed_dir=config.SEED_DIR)
        seeded = store.get("greenhouse-apply-v1")
        store.save(seeded.model_copy(update={"health_score": 0.1}))

        again = FileManualStore(tmp_path, seed_dir=config.SEED_DIR)
        assert again.get("greenhouse-apply-v1").health_score == 0.1

    def test_missing_seed_dir_is_ignored(self, tmp_path):
        store = FileManualStore(tmp_path / "m", seed_dir=tmp_path / "absent")
        assert store.get_all() == []


# ---------------------------------------------------------------------------
# 4. Creation helpers
# ---------------------------------------------------------------------------


class TestCreationHelpers:
    def test_save_from_trace_generalizes_url(self):
        store = MemoryManualStore()
        m = store.save_from_trace(_steps(), WORKDAY_URL, "apply", platform="workday")
        assert m.url_pattern == "*.myworkdayjobs.com/*/careers/job/*/apply"
        assert m.source == "recorded"
        assert m.health_score == 1.0
        assert store.get(m.id) == m

    def test_save_from_trace_defaults_platform(self):
        m = MemoryManualStore().save_from_trace(_steps(), "https://example.com/apply", "apply")
        assert m.platform == "other"

    def test_save_from_catalog_starts_below_recorded(self):
        store = MemoryManualStore()
        m = store.save_from_catalog(_steps(), "apply", url="https://boards.greenhouse.io/acme/jobs/1", platform="greenhouse")
        assert m.source == "imported"
        assert m.health_score == 0.8
        assert m.url_pattern == "*.greenhouse.io/acme/jobs/*"

    def test_save_from_catalog_explicit_pattern_wins(self):
        m = MemoryManualStore().save_from_catalog(_steps(), "apply", url_pattern="example.com/*", url="https://x.io/a")
        assert m.url_pattern == "example.com/*"

    def test_save_from_catalog_without_url_matches_anything(self):
        m = MemoryManualStore().save_from_catalog(_steps(), "apply")
        assert m.url_pattern == "*"

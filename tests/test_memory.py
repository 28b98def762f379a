"""
Tests for memory extraction: file-edit records, daily-log scanning, refresh timer.
"""
import textwrap
from pathlib import Path

import pytest

from flow.memory import (
    MemoryExtractor,
    MemoryRefreshScheduler,
    accomplishment_items,
    categorize_file,
    decision_items,
)
from flow.store import MEMORY

DAILY_LOG = textwrap.dedent("""\
    # 19-10-2026

    ## Key Accomplishments
    - **Shipped the board diff** so moves show up in the feed
    - **Tiny** x
    - **None yet**

    ## Technical Decisions
    - Keep JSON documents instead of SQLite for now
    - short
    ---

    ## Notes
    - this bullet is not a decision at all
    """)


@pytest.fixture
def memory_dir(cfg):
    path = Path(cfg.memory_dir)
    path.mkdir(parents=True)
    return path


@pytest.fixture
def extractor(store, memory_dir, clock):
    return MemoryExtractor(store, str(memory_dir), clock=clock)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# File-edit path
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("name,expected", [
    ("SOUL.md", ("identity", "🌊")),
    ("IDENTITY.md", ("identity", "🆔")),
    ("USER.md", ("preference", "👤")),
    ("MEMORY.md", ("milestone", "🧠")),
    ("trading-notes.md", ("trading", "📈")),
    ("STRATEGY.md", ("business", "💼")),
    ("Business-plan.md", ("business", "💼")),
    ("TOOLS.md", ("system", "📝")),
    ("USER_SOUL.md", ("identity", "🌊")),  # SOUL outranks USER
])
def test_categorize_file(name, expected):
    assert categorize_file(name) == expected


def test_file_edit_creates_record(extractor, store):
    record = extractor.extract_from_file_edit("SOUL.md")

    assert record is not None
    stored = store.get(MEMORY)["memories"]
    assert len(stored) == 1
    assert stored[0]["content"] == "Updated SOUL"
    assert stored[0]["category"] == "identity"
    assert stored[0]["source"] == "kai_profile"
    assert stored[0]["addedBy"] == "Pete"
    assert stored[0]["type"] == "edit"


def test_file_edit_deduplicated_within_one_hour(extractor, store, clock):
    """Two edits inside an hour make one record; an edit after the hour makes another"""
    assert extractor.extract_from_file_edit("SOUL.md") is not None
    clock.advance(minutes=30)
    assert extractor.extract_from_file_edit("SOUL.md") is None
    assert len(store.get(MEMORY)["memories"]) == 1

    clock.advance(minutes=31)
    assert extractor.extract_from_file_edit("SOUL.md") is not None
    memories = store.get(MEMORY)["memories"]
    assert len(memories) == 2
    assert all(m["category"] == "identity" for m in memories)


def test_file_edit_different_files_not_deduplicated(extractor, store):
    extractor.extract_from_file_edit("SOUL.md")
    extractor.extract_from_file_edit("USER.md")
    assert [m["content"] for m in store.get(MEMORY)["memories"]] == ["Updated USER", "Updated SOUL"]


def test_file_edit_caps_log(extractor, store, clock):
    for i in range(60):
        extractor.extract_from_file_edit(f"note-{i}.md")
    memories = store.get(MEMORY)["memories"]
    assert len(memories) == 50
    assert memories[0]["content"] == "Updated note-59"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Daily logs
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_section_item_extraction():
    assert accomplishment_items(DAILY_LOG) == [
        "Shipped the board diff so moves show up in the feed",
        "Tiny x",
        "None yet",
    ]
    assert decision_items(DAILY_LOG)[0] == "Keep JSON documents instead of SQLite for now"
    assert "this bullet is not a decision at all" not in decision_items(DAILY_LOG)


def test_parse_daily_logs(extractor, store, memory_dir):
    (memory_dir / "19-10-2026.md").write_text(DAILY_LOG)

    assert extractor.parse_daily_logs() == 2

    memories = store.get(MEMORY)["memories"]
    by_type = {m["type"]: m for m in memories}
    assert by_type["accomplishment"]["content"] == "Shipped the board diff so moves show up in the feed"
    assert by_type["accomplishment"]["category"] == "milestone"
    assert by_type["accomplishment"]["addedBy"] == "Kai"
    assert by_type["accomplishment"]["source"] == "daily_log_19-10-2026"
    assert by_type["decision"]["category"] == "product"
    assert by_type["decision"]["icon"] == "💡"


def test_parse_daily_logs_is_idempotent(extractor, store, memory_dir):
    (memory_dir / "19-10-2026.md").write_text(DAILY_LOG)
    extractor.parse_daily_logs()
    assert extractor.parse_daily_logs() == 0
    assert len(store.get(MEMORY)["memories"]) == 2


def test_parse_daily_logs_ignores_other_file_names(extractor, store, memory_dir):
    (memory_dir / "2026-10-19.md").write_text(DAILY_LOG)
    (memory_dir / "notes.md").write_text(DAILY_LOG)
    (memory_dir / "19-10-2026.txt").write_text(DAILY_LOG)

    assert extractor.parse_daily_logs() == 0
    assert not store.exists(MEMORY)


def test_parse_daily_logs_sorts_newest_first(extractor, store, memory_dir, clock):
    extractor.extract_from_file_edit("SOUL.md")
    clock.advance(minutes=5)
    (memory_dir / "19-10-2026.md").write_text(DAILY_LOG)
    extractor.parse_daily_logs()

    memories = store.get(MEMORY)["memories"]
    assert memories[-1]["content"] == "Updated SOUL"


def test_long_items_truncated_and_still_deduplicated(extractor, store, memory_dir):
    long_item = "Refactored " + "everything " * 40
    (memory_dir / "18-10-2026.md").write_text(f"## Technical Decisions\n- {long_item}\n")

    assert extractor.parse_daily_logs() == 1
    assert extractor.parse_daily_logs() == 0
    assert len(store.get(MEMORY)["memories"][0]["content"]) == 200


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Refresh scheduler
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestMemoryRefreshScheduler:

    def test_runs_once_on_start(self, extractor, store, memory_dir):
        (memory_dir / "19-10-2026.md").write_text(DAILY_LOG)
        scheduler = MemoryRefreshScheduler(extractor, interval=3600)
        scheduler.start()
        scheduler.stop(timeout=5)
        assert len(store.get(MEMORY)["memories"]) == 2

    def test_run_once_swallows_errors(self, extractor, monkeypatch):
        def broken():
            raise OSError("disk gone")

        monkeypatch.setattr(extractor, "parse_daily_logs", broken)
        MemoryRefreshScheduler(extractor).run_once()

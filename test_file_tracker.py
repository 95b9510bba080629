"""
Tests for FileTracker staleness checks.
"""

import os

import pytest

from agent import FileAlreadyExistsError, FileOutdatedError, FileTracker, ToolError


def bump_mtime(path, seconds=5):
    st = os.stat(path)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture
def tracker():
    return FileTracker()


def test_read_records_file(tracker, tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("alpha")

    assert tracker.read(str(f)) == "alpha"
    assert tracker.is_tracked(str(f))
    assert tracker.tracked_count == 1


def test_read_missing_and_directory(tracker, tmp_path):
    with pytest.raises(ToolError, match="File not found"):
        tracker.read(str(tmp_path / "nope.txt"))
    with pytest.raises(ToolError, match="directory"):
        tracker.read(str(tmp_path))


def test_edit_refused_after_external_change(tracker, tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("alpha")
    tracker.read(str(f))

    f.write_text("changed elsewhere")
    bump_mtime(f)

    with pytest.raises(FileOutdatedError, match="modified since it was last read"):
        tracker.assert_can_edit(str(f))
    assert not tracker.is_tracked(str(f))

    tracker.read(str(f))
    tracker.assert_can_edit(str(f))


def test_edit_after_own_write_is_allowed(tracker, tmp_path):
    f = tmp_path / "a.txt"
    tracker.write(str(f), "one")
    tracker.assert_can_edit(str(f))
    tracker.write(str(f), "two")
    tracker.assert_can_edit(str(f))
    assert f.read_text() == "two"


def test_untracked_existing_file_is_adopted(tracker, tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("alpha")

    tracker.assert_can_edit(str(f))

    assert tracker.is_tracked(str(f))


def test_edit_of_missing_file(tracker, tmp_path):
    with pytest.raises(FileOutdatedError, match="'create' tool"):
        tracker.assert_can_edit(str(tmp_path / "new.txt"))


def test_edit_of_deleted_file(tracker, tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("alpha")
    tracker.read(str(f))
    f.unlink()

    with pytest.raises(FileOutdatedError, match="deleted"):
        tracker.assert_can_edit(str(f))
    assert not tracker.is_tracked(str(f))


def test_create_refuses_existing(tracker, tmp_path):
    f = tmp_path / "a.txt"
    tracker.assert_can_create(str(f))
    f.write_text("x")

    with pytest.raises(FileAlreadyExistsError) as exc:
        tracker.assert_can_create(str(f))
    assert "Use the 'edit' tool" in str(exc.value)


def test_write_creates_parent_directories(tracker, tmp_path):
    f = tmp_path / "deep" / "nested" / "file.txt"
    tracker.write(str(f), "content")
    assert f.read_text() == "content"
    assert tracker.is_tracked(str(f))


def test_oldest_entries_evicted(tmp_path):
    tracker = FileTracker(max_tracked=2)
    paths = []
    for name in ("a", "b", "c"):
        f = tmp_path / name
        f.write_text(name)
        tracker.read(str(f))
        paths.append(str(f))

    assert tracker.tracked_files() == paths[1:]


def test_forget_and_clear(tracker, tmp_path):
    f = tmp_path / "a.txt"
    f.write_text("alpha")
    tracker.read(str(f))

    tracker.forget(str(f))
    assert not tracker.is_tracked(str(f))

    tracker.read(str(f))
    tracker.clear()
    assert tracker.tracked_count == 0

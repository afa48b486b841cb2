"""Tests for the local filesystem store."""

from unittest.mock import patch

import pytest

from pygsync.sync.local import LocalStore


class TestLocalStore:
    """Test LocalStore."""

    def test_write_bytes_creates_parents_and_sets_mtime(self, tmp_path):
        """Test atomic write with preserved modification time."""
        store = LocalStore(tmp_path)
        store.write_bytes("a/b/c.md", b"data", modified_at=1_600_000_000_500)

        assert (tmp_path / "a" / "b" / "c.md").read_bytes() == b"data"
        assert store.stat("a/b/c.md").mtime_ms == 1_600_000_000_500
        assert not list((tmp_path / "a" / "b").glob("*.pygsync-tmp"))

    def test_path_escape_is_rejected(self, tmp_path):
        """Test that paths leaving the vault are refused."""
        store = LocalStore(tmp_path)
        with pytest.raises(ValueError, match="escapes"):
            store.read_bytes("../outside.md")

    def test_list_all_entries_uses_forward_slashes(self, tmp_path):
        """Test enumeration of nested entries."""
        (tmp_path / "d").mkdir()
        (tmp_path / "d" / "f.md").write_text("x")
        store = LocalStore(tmp_path)

        assert store.list_all_entries() == [("d", True), ("d/f.md", False)]

    def test_list_all_entries_prunes(self, tmp_path):
        """Test that pruned directories are not entered."""
        (tmp_path / "skip").mkdir()
        (tmp_path / "skip" / "f.md").write_text("x")
        store = LocalStore(tmp_path)

        assert store.list_all_entries(prune=lambda p: p == "skip") == []

    def test_list_container(self, tmp_path):
        """Test listing direct children."""
        (tmp_path / "d").mkdir()
        (tmp_path / "f.md").write_text("x")
        files, containers = LocalStore(tmp_path).list_container("")
        assert files == ["f.md"]
        assert containers == ["d"]

    def test_remove_empty_container(self, tmp_path):
        """Test that only empty directories are removed."""
        (tmp_path / "empty").mkdir()
        (tmp_path / "full").mkdir()
        (tmp_path / "full" / "f.md").write_text("x")
        store = LocalStore(tmp_path)

        store.remove_empty_container("empty")
        store.remove_empty_container("full")
        store.remove_empty_container("missing")

        assert not (tmp_path / "empty").exists()
        assert (tmp_path / "full" / "f.md").exists()

    def test_move_to_trash_uses_send2trash(self, tmp_path):
        """Test that deletions go through the system trash."""
        (tmp_path / "f.md").write_text("x")
        store = LocalStore(tmp_path, use_trash=True)

        with patch("pygsync.sync.local.send2trash") as mock_trash:
            store.move_to_trash("f.md")

        mock_trash.assert_called_once_with(str(tmp_path / "f.md"))

    def test_move_to_trash_without_trash_unlinks(self, tmp_path):
        """Test permanent deletion when the trash is disabled."""
        (tmp_path / "f.md").write_text("x")
        store = LocalStore(tmp_path, use_trash=False)

        store.move_to_trash("f.md")
        store.move_to_trash("f.md")

        assert not (tmp_path / "f.md").exists()

    def test_copy_file(self, tmp_path):
        """Test duplicating a file's content."""
        (tmp_path / "a.md").write_bytes(b"original")
        store = LocalStore(tmp_path)

        store.copy_file("a.md", "sub/a_copy.md")

        assert (tmp_path / "sub" / "a_copy.md").read_bytes() == b"original"
        assert store.exists("a.md")

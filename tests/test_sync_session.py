"""End-to-end tests for SyncSession with an in-memory Drive."""

import os
import threading
from unittest.mock import Mock

import pytest
from conftest import FakeRemoteStore, MemoryWatermarkStore

from pygsync.config import SyncSettings
from pygsync.exceptions import GSyncAuthenticationError, SyncBusyError
from pygsync.models import DriveFile
from pygsync.sync.filters import ExclusionFilter
from pygsync.sync.local import LocalStore
from pygsync.sync.models import RunOutcome, SessionState
from pygsync.sync.planner import SyncPlanner
from pygsync.sync.progress import SyncProgressEvent
from pygsync.sync.scanner import LocalIndexer, RemoteIndexer
from pygsync.sync.session import SyncSession
from pygsync.sync.state import SyncStateStore
from pygsync.utils import FOLDER_MIME_TYPE

T0 = 1_600_000_000_000


def write(root, path, content, mtime):
    target = root / path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    ns = mtime * 1_000_000
    os.utime(target, ns=(ns, ns))


def local_tree(root):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def vault(tmp_path):
    """Create an empty vault directory."""
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def remote():
    """Create an in-memory Drive."""
    return FakeRemoteStore(page_size=3)


@pytest.fixture
def state():
    """Create an in-memory watermark store."""
    return MemoryWatermarkStore()


@pytest.fixture
def clock():
    """Create a controllable clock."""
    return Clock(T0 + 10_000)


def make_session(vault, remote, state, clock, policy="prefer-newer", **kwargs):
    settings = SyncSettings(folder_name="Vault", conflict_policy=policy, **kwargs)
    return SyncSession(
        settings=settings,
        remote=remote,
        local=LocalStore(vault, use_trash=False),
        state_store=state,
        clock=clock,
    )


def assert_converged(vault, remote, state):
    """Rebuilding both indices after a run must give an empty plan."""
    exclusion = ExclusionFilter(excluded_folders=[".obsidian", ".git", ".trash"])
    local_index = LocalIndexer(LocalStore(vault), exclusion).build_index()
    remote_index = RemoteIndexer(remote, exclusion, state.root_id).build_index()
    plan = SyncPlanner().plan(local_index, remote_index, state.watermark)
    assert plan.is_empty, plan.paths()
    assert set(local_index) == set(remote_index)


class TestFirstSync:
    """Test runs against a zero watermark."""

    def test_scenario_a_upload(self, vault, remote, state, clock):
        """Test that a local-only file is uploaded on the first run."""
        write(vault, "a.md", b"alpha", T0 + 100)
        session = make_session(vault, remote, state, clock)

        result = session.run()

        assert result.outcome == RunOutcome.SUCCESS
        assert result.plan.paths()["uploads"] == ["a.md"]
        assert result.uploaded == 1
        assert state.watermark == clock.now
        assert result.watermark == clock.now
        assert remote.tree(state.root_id) == {"a.md": b"alpha"}
        assert_converged(vault, remote, state)

    def test_root_folder_created_and_persisted(self, vault, remote, state, clock):
        """Test that the sync root is found or created once."""
        session = make_session(vault, remote, state, clock)

        session.run()
        root_id = state.root_id
        session.run()

        assert root_id is not None
        assert state.root_id == root_id
        assert remote.items[root_id].name == "Vault"
        assert remote.calls.count(("find_or_create_container", "Vault")) == 1

    def test_two_way_merge_converges(self, vault, remote, state, clock):
        """Test that disjoint trees merge into identical trees."""
        write(vault, "notes/local.md", b"L", T0 + 1)
        write(vault, ".obsidian/app.json", b"{}", T0 + 1)
        root = remote.add_folder("Vault")
        state.root_id = root
        sub = remote.add_folder("notes", root)
        remote.add_file("remote.md", sub, b"R", modified_at=T0 + 2)
        remote.add_file("top.md", root, b"T", modified_at=T0 + 3)

        result = make_session(vault, remote, state, clock).run()

        assert result.outcome == RunOutcome.SUCCESS
        assert local_tree(vault) == {
            ".obsidian/app.json": b"{}",
            "notes/local.md": b"L",
            "notes/remote.md": b"R",
            "top.md": b"T",
        }
        assert remote.tree(root) == {
            "notes": None,
            "notes/local.md": b"L",
            "notes/remote.md": b"R",
            "top.md": b"T",
        }
        assert_converged(vault, remote, state)

    def test_second_run_is_empty(self, vault, remote, state, clock):
        """Test idempotence: a run right after a sync does nothing."""
        write(vault, "a/b/c.md", b"x", T0)
        session = make_session(vault, remote, state, clock)
        session.run()

        clock.now += 1_000
        result = session.run()

        assert result.plan.is_empty
        assert result.completed_count == 0
        assert state.watermark == clock.now


class TestIncrementalSync:
    """Test runs with an established watermark."""

    @pytest.fixture
    def synced(self, vault, remote, state, clock):
        """Run a first sync of a small vault."""
        write(vault, "b.md", b"bee", T0)
        write(vault, "c.md", b"sea", T0)
        session = make_session(vault, remote, state, clock)
        session.run()
        clock.now += 10_000
        return session

    def remote_id(self, remote, name):
        return [f.id for f in remote.items.values() if f.name == name][0]

    def test_scenario_b_local_deletion_trashes_remote(
        self, synced, vault, remote, state
    ):
        """Test that deleting locally removes the remote copy."""
        (vault / "b.md").unlink()

        result = synced.run()

        assert result.plan.paths()["delete_remote"] == ["b.md"]
        assert remote.items[self.remote_id(remote, "b.md")].trashed
        assert_converged(vault, remote, state)

    def test_remote_deletion_removes_local(self, synced, vault, remote, state):
        """Test that trashing remotely deletes the local copy."""
        remote.items[self.remote_id(remote, "c.md")].trashed = True

        result = synced.run()

        assert result.plan.paths()["delete_local"] == ["c.md"]
        assert not (vault / "c.md").exists()
        assert_converged(vault, remote, state)

    def test_local_edit_uploads_in_place(self, synced, vault, remote, state, clock):
        """Test that editing a synced file updates the same remote file."""
        write(vault, "b.md", b"bee v2", clock.now - 5_000)

        result = synced.run()

        assert result.plan.paths()["uploads"] == ["b.md"]
        assert len([f for f in remote.items.values() if f.name == "b.md"]) == 1
        assert remote.tree(state.root_id)["b.md"] == b"bee v2"
        assert_converged(vault, remote, state)

    def test_scenario_c_prefer_newer_downloads(
        self, synced, vault, remote, state, clock
    ):
        """Test that a two-sided change resolves to the newer remote copy."""
        start_w = state.watermark
        write(vault, "c.md", b"local edit", start_w + 100)
        file_id = self.remote_id(remote, "c.md")
        remote.upload("c.md", b"remote edit", "text/markdown", "", file_id, start_w + 200)

        result = synced.run()

        assert result.plan.paths()["conflicts"] == ["c.md"]
        assert result.conflicts_resolved == 1
        assert (vault / "c.md").read_bytes() == b"remote edit"
        assert_converged(vault, remote, state)

    def test_scenario_d_keep_both(self, vault, remote, state, clock):
        """Test that keep-both preserves the local edit under a new name."""
        write(vault, "c.md", b"sea", T0)
        session = make_session(vault, remote, state, clock, policy="keep-both")
        session.run()
        clock.now += 10_000

        start_w = state.watermark
        write(vault, "c.md", b"local edit", start_w + 100)
        file_id = [f.id for f in remote.items.values() if f.name == "c.md"][0]
        remote.upload("c.md", b"remote edit", "text/markdown", "", file_id, start_w + 200)

        result = session.run()

        copy = f"c_conflict_{clock.now}.md"
        assert result.conflicts_resolved == 1
        assert local_tree(vault) == {"c.md": b"remote edit", copy: b"local edit"}
        assert remote.tree(state.root_id) == {
            "c.md": b"remote edit",
            copy: b"local edit",
        }
        assert_converged(vault, remote, state)

    def test_full_resync_never_deletes(self, synced, vault, remote, state):
        """Test that a full run restores instead of deleting."""
        (vault / "b.md").unlink()

        result = synced.run(full=True)

        assert result.plan.paths()["downloads"] == ["b.md"]
        assert (vault / "b.md").read_bytes() == b"bee"

    def test_dry_run_changes_nothing(self, synced, vault, remote, state):
        """Test that a dry run only reports the plan."""
        before = state.watermark
        (vault / "b.md").unlink()

        result = synced.run(dry_run=True)

        assert result.plan.paths()["delete_remote"] == ["b.md"]
        assert not remote.items[self.remote_id(remote, "b.md")].trashed
        assert state.watermark == before


class TestFailuresAndAborts:
    """Test watermark handling when things go wrong."""

    def test_partial_failure_advances_watermark(self, vault, remote, state, clock):
        """Test that item failures do not block the watermark."""
        write(vault, "ok.md", b"1", T0)
        write(vault, "bad.md", b"2", T0)
        remote.fail_uploads.add("bad.md")

        result = make_session(vault, remote, state, clock).run()

        assert result.outcome == RunOutcome.PARTIAL
        assert result.uploaded == 1
        assert [f.path for f in result.failures] == ["bad.md"]
        assert state.watermark == clock.now

    def test_failed_upload_is_deleted_locally_on_next_run(
        self, vault, remote, state, clock
    ):
        """Test that a file whose upload failed is later treated as deleted."""
        write(vault, "bad.md", b"2", T0)
        remote.fail_uploads.add("bad.md")
        make_session(vault, remote, state, clock).run()

        remote.fail_uploads.clear()
        clock.now += 1_000
        plan = make_session(vault, remote, state, clock).run(dry_run=True).plan

        assert plan.paths()["delete_local"] == ["bad.md"]

    def test_auth_failure_aborts_and_keeps_watermark(self, vault, state, clock):
        """Test that an auth error before indexing aborts the run."""
        state.watermark = 123
        remote = Mock()
        remote.find_or_create_container.side_effect = GSyncAuthenticationError(
            "token expired"
        )

        result = make_session(vault, remote, state, clock).run()

        assert result.outcome == RunOutcome.ABORTED
        assert "token expired" in result.error
        assert not result.ok
        assert state.watermark == 123
        remote.list_children.assert_not_called()

    def test_auth_failure_during_execution_keeps_watermark(
        self, vault, remote, state, clock
    ):
        """Test that a credential revoked mid-run aborts without advancing."""
        session = make_session(vault, remote, state, clock)
        session.run()
        first = state.watermark

        write(vault, "new.md", b"n", first + 500)
        write(vault, "other.md", b"o", first + 500)
        clock.now = first + 10_000
        remote.upload = Mock(side_effect=GSyncAuthenticationError("token revoked"))

        result = session.run()

        assert result.outcome == RunOutcome.ABORTED
        assert "token revoked" in result.error
        assert state.watermark == first
        assert result.uploaded == 0

        # The files are still uploads, not local deletions
        clock.now += 10_000
        plan = session.run(dry_run=True).plan
        assert plan.paths()["uploads"] == ["new.md", "other.md"]
        assert plan.paths()["delete_local"] == []

    def test_structural_failure_aborts(self, vault, state, clock):
        """Test that a listing that never ends aborts the run."""
        state.watermark = 123
        state.root_id = "root"
        remote = Mock()
        remote.get_metadata.return_value = DriveFile(
            id="root", name="Vault", mime_type=FOLDER_MIME_TYPE
        )
        remote.list_children.side_effect = [([], "again"), ([], "again")]

        result = make_session(vault, remote, state, clock).run()

        assert result.outcome == RunOutcome.ABORTED
        assert "repeated page token" in result.error
        assert state.watermark == 123

    def test_watermark_never_decreases(self, vault, remote, state, clock):
        """Test that a clock going backwards cannot lower the watermark."""
        session = make_session(vault, remote, state, clock)
        session.run()
        high = state.watermark

        clock.now -= 5_000
        session.run()

        assert state.watermark == high

    def test_trashed_root_is_replaced(self, vault, remote, state, clock):
        """Test that a trashed sync root is recreated and treated as new."""
        write(vault, "a.md", b"x", T0)
        session = make_session(vault, remote, state, clock)
        session.run()
        old_root = state.root_id
        remote.items[old_root].trashed = True
        clock.now += 10_000

        result = session.run()

        assert state.root_id != old_root
        assert result.plan.paths()["uploads"] == ["a.md"]
        assert (vault / "a.md").exists()


class TestExclusivity:
    """Test run exclusivity and state reporting."""

    def test_concurrent_run_is_rejected(self, vault, remote, state, clock):
        """Test that a second run fails fast while one is active."""
        session = make_session(vault, remote, state, clock)
        entered = threading.Event()
        release = threading.Event()
        errors = []

        original = remote.find_or_create_container

        def slow_find(name, parent_id=None):
            entered.set()
            release.wait(5)
            return original(name, parent_id)

        remote.find_or_create_container = slow_find

        worker = threading.Thread(target=session.run)
        worker.start()
        assert entered.wait(5)
        try:
            assert session.is_running
            assert session.state == SessionState.PREPARING
            with pytest.raises(SyncBusyError):
                session.run()
        except AssertionError as e:
            errors.append(e)
        finally:
            release.set()
            worker.join(5)

        assert errors == []
        assert session.state == SessionState.IDLE
        assert not session.is_running

    def test_second_session_on_same_vault_is_rejected(
        self, vault, remote, clock, tmp_path
    ):
        """Test that separate sessions for one vault never run together."""
        state_dir = tmp_path / "state"
        first = make_session(
            vault, remote, SyncStateStore(vault, "Vault", state_dir), clock
        )
        second = make_session(
            vault, remote, SyncStateStore(vault, "Vault", state_dir), clock
        )
        entered = threading.Event()
        release = threading.Event()
        original = remote.find_or_create_container

        def slow_find(name, parent_id=None):
            entered.set()
            release.wait(5)
            return original(name, parent_id)

        remote.find_or_create_container = slow_find
        worker = threading.Thread(target=first.run)
        worker.start()
        try:
            assert entered.wait(5)
            with pytest.raises(SyncBusyError):
                second.run()
        finally:
            release.set()
            worker.join(5)

        remote.find_or_create_container = original
        assert second.run().outcome == RunOutcome.SUCCESS

    def test_progress_phases(self, vault, remote, state, clock):
        """Test that the session reports each phase in order."""
        write(vault, "a.md", b"x", T0)
        events = []
        session = make_session(vault, remote, state, clock)
        session.progress = events.append

        session.run()

        phases = [e.event for e in events if e.event != SyncProgressEvent.ITEM_DONE]
        assert phases == [
            SyncProgressEvent.PREPARING,
            SyncProgressEvent.INDEXING,
            SyncProgressEvent.PLANNING,
            SyncProgressEvent.EXECUTING,
            SyncProgressEvent.FINISHED,
        ]

    def test_cancel_keeps_watermark(self, vault, remote, state, clock):
        """Test that a cancelled run leaves the watermark alone."""
        for i in range(3):
            write(vault, f"f{i}.md", b"x", T0)
        session = make_session(vault, remote, state, clock, max_workers=1)

        def cancel_on_first_item(info):
            if info.event == SyncProgressEvent.ITEM_DONE:
                session.cancel()

        session.progress = cancel_on_first_item
        result = session.run()

        assert result.outcome == RunOutcome.CANCELLED
        assert result.uploaded == 1
        assert result.skipped == 2
        assert state.watermark == 0

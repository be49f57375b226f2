"""Tests for the ipfs-sync daemon."""

from __future__ import annotations

import json
import os
import threading

import pytest

from ipfs_sync.daemon import (
    PID_FILE,
    STATE_FILE,
    DaemonState,
    SyncDaemon,
    is_running,
    load_state,
    read_pid,
)
from ipfs_sync.models import FilestoreEntry, WatcherState
from ipfs_sync.reconcile import StartupError
from ipfs_sync.remote import FILESTORE_NO_FILE, RemoteUnavailable


@pytest.fixture
def daemon_home(tmp_path):
    home = tmp_path / ".ipfs-sync"
    home.mkdir()
    return home


@pytest.fixture
def daemon(sync_config, daemon_home, remote, observer):
    svc = SyncDaemon(sync_config, home=daemon_home, remote=remote, observer_factory=lambda: observer)
    yield svc
    svc.stop()


class TestDaemonState:
    def test_record_poll_accumulates(self):
        state = DaemonState()
        state.record_poll(2)
        state.record_poll(1)
        assert state.publish_count == 3
        assert state.last_poll is not None

    def test_error_limit(self):
        state = DaemonState()
        for i in range(60):
            state.record_error(f"error-{i}")
        assert len(state.errors) == 50

    def test_snapshot(self):
        state = DaemonState()
        state.record_error("boom")
        snap = state.snapshot([])
        assert snap.pid == os.getpid()
        assert len(snap.errors) == 1

    def test_thread_safety(self):
        state = DaemonState()

        def worker():
            for _ in range(100):
                state.record_poll(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert state.publish_count == 400


class TestLifecycle:
    def test_start_and_stop(self, daemon, daemon_home, remote, dir_key):
        daemon.start()
        assert read_pid(daemon_home) == os.getpid()
        assert remote.calls["version"] == 1
        assert remote.published["docs"] == dir_key.cid

        state = load_state(daemon_home)
        assert state.directories[0].id == "docs"
        assert state.directories[0].cid == dir_key.cid
        assert state.directories[0].watcher is WatcherState.LIVE

        daemon.stop()
        assert not (daemon_home / PID_FILE).exists()
        assert load_state(daemon_home).directories[0].watcher is WatcherState.STOPPED

    def test_opens_store(self, daemon, sync_config):
        daemon.start()
        assert daemon.store is not None
        assert daemon.store.count() == 3

    def test_unreachable_node(self, daemon, daemon_home, remote):
        remote.fail("version", RemoteUnavailable("connection refused"))
        with pytest.raises(StartupError):
            daemon.start()
        assert not (daemon_home / PID_FILE).exists()

    def test_cleans_filestore_for_nocopy(self, daemon, remote, dir_key):
        dir_key.nocopy = True
        remote.filestore = [FilestoreEntry(status=FILESTORE_NO_FILE, key="QmStale")]
        daemon.start()
        assert remote.removed_blocks == ["QmStale"]

    def test_no_filestore_scan_without_nocopy(self, daemon, remote):
        daemon.start()
        assert remote.calls["verify_integrity"] == 0

    def test_startup_failure_cleans_up(self, daemon, daemon_home, remote):
        remote.fail("generate_identity", RuntimeError("unexpected"))
        with pytest.raises(RuntimeError):
            daemon.start()
        assert not (daemon_home / PID_FILE).exists()
        assert "unexpected" in load_state(daemon_home).errors[0]

    def test_poll_pass_saves_state(self, daemon, daemon_home):
        daemon.start()
        daemon._on_pass(1)
        state = json.loads((daemon_home / STATE_FILE).read_text())
        assert state["publish_count"] == 1
        assert state["last_poll"] is not None

    def test_stop_is_idempotent(self, daemon):
        daemon.start()
        daemon.stop()
        daemon.stop()


class TestPidHelpers:
    def test_no_pid_file(self, daemon_home):
        assert read_pid(daemon_home) is None
        assert is_running(daemon_home) is False

    def test_live_pid(self, daemon_home):
        (daemon_home / PID_FILE).write_text(str(os.getpid()))
        assert read_pid(daemon_home) == os.getpid()
        assert is_running(daemon_home) is True

    def test_garbage_pid_removed(self, daemon_home):
        (daemon_home / PID_FILE).write_text("not-a-pid")
        assert read_pid(daemon_home) is None
        assert not (daemon_home / PID_FILE).exists()


class TestLoadState:
    def test_missing(self, daemon_home):
        assert load_state(daemon_home) is None

    def test_corrupt(self, daemon_home):
        (daemon_home / STATE_FILE).write_text("{nope")
        assert load_state(daemon_home) is None

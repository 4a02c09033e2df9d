"""Tests for approval status tracking and expiry."""

from stores.directory import UserDirectory
from stores.status_store import StatusStore

from conftest import DAY


class TestStatusStore:

    def test_never_submitted_is_none(self, status_store):
        assert status_store.get("1", "code") == "none"

    def test_set_pending_then_get(self, status_store):
        status_store.set_pending("1", "code")
        assert status_store.get("1", "code") == "pending"

    def test_set_pending_is_idempotent(self, status_store):
        status_store.set_pending("1", "code")
        status_store.set_pending("1", "code")
        assert status_store.get("1", "code") == "pending"
        assert len(status_store) == 1

    def test_approve_and_reject(self, status_store):
        status_store.set_pending("1", "code")
        status_store.set_pending("1", "passport")
        assert status_store.set_decision("1", "code", True) is True
        assert status_store.set_decision("1", "passport", False) is True
        assert status_store.get("1", "code") == "approved"
        assert status_store.get("1", "passport") == "rejected"

    def test_pending_overwrites_decision(self, status_store):
        status_store.set_pending("1", "code")
        status_store.set_decision("1", "code", False)
        status_store.set_pending("1", "code")
        assert status_store.get("1", "code") == "pending"

    def test_later_decision_wins(self, status_store):
        status_store.set_pending("1", "code")
        status_store.set_decision("1", "code", False)
        status_store.set_decision("1", "code", True)
        assert status_store.get("1", "code") == "approved"

    def test_decision_for_unknown_key_dropped(self, status_store):
        status_store.set_pending("1", "code")
        assert status_store.set_decision("99", "code", True) is False
        assert status_store.set_decision("1", "login", True) is False
        assert status_store.get("99", "code") == "none"
        assert status_store.get("1", "code") == "pending"

    def test_expired_entry_reads_none_without_sweep(self, status_store, clock):
        status_store.set_pending("1", "code")
        clock.advance(DAY + 1)
        assert status_store.get("1", "code") == "none"
        assert len(status_store) == 1

    def test_decision_on_expired_entry_dropped(self, status_store, clock):
        status_store.set_pending("1", "code")
        clock.advance(DAY + 1)
        assert status_store.set_decision("1", "code", True) is False

    def test_sweep_removes_only_expired(self, status_store, clock):
        status_store.set_pending("1", "code")
        clock.advance(DAY - 60)
        status_store.set_pending("2", "code")
        clock.advance(120)
        assert status_store.sweep() == 1
        assert status_store.get("2", "code") == "pending"
        assert len(status_store) == 1


class TestDurableStatusStore:

    def test_statuses_survive_restart(self, tmp_path, clock):
        path = tmp_path / "users.json"
        directory = UserDirectory(path, clock=clock)
        directory.init()
        directory.ensure_user("1", "1.2.3.4")
        store = StatusStore(DAY, directory=directory, clock=clock)
        store.set_pending("1", "code")
        store.set_decision("1", "code", True)
        directory.close()

        directory2 = UserDirectory(path, clock=clock)
        directory2.init()
        store2 = StatusStore(DAY, directory=directory2, clock=clock)
        store2.init()
        assert store2.get("1", "code") == "approved"

    def test_expired_statuses_not_restored(self, tmp_path, clock):
        path = tmp_path / "users.json"
        directory = UserDirectory(path, clock=clock)
        directory.init()
        directory.ensure_user("1", "1.2.3.4")
        StatusStore(DAY, directory=directory, clock=clock).set_pending("1", "code")
        directory.close()

        clock.advance(DAY + 1)
        directory2 = UserDirectory(path, clock=clock)
        directory2.init()
        store2 = StatusStore(DAY, directory=directory2, clock=clock)
        store2.init()
        assert len(store2) == 0

    def test_decision_for_user_missing_from_directory_dropped(self, durable_directory, clock):
        store = StatusStore(DAY, directory=durable_directory, clock=clock)
        store.set_pending("5", "code")  # no directory record for "5"
        assert store.set_decision("5", "code", True) is False
        assert store.get("5", "code") == "pending"

    def test_sweep_forgets_persisted_status(self, durable_directory, clock):
        durable_directory.ensure_user("1", "1.2.3.4")
        store = StatusStore(DAY, directory=durable_directory, clock=clock)
        store.set_pending("1", "code")
        clock.advance(DAY + 1)
        assert store.sweep() == 1
        assert durable_directory.get("1")["step_statuses"] == {}

    def test_writes_stay_in_memory_until_flush(self, durable_directory, tmp_path, clock):
        durable_directory.ensure_user("1", "1.2.3.4")
        store = StatusStore(DAY, directory=durable_directory, clock=clock)
        store.set_pending("1", "code")

        assert not (tmp_path / "users.json").exists()
        assert durable_directory.dirty is True
        assert durable_directory.flush() is True
        assert durable_directory.dirty is False

    def test_status_lock_released_before_directory_mirror(self, tmp_path, clock):
        class RecordingDirectory(UserDirectory):
            def record_step_status(self, user_id, step, entry):
                held.append(store._lock.locked())
                return super().record_step_status(user_id, step, entry)

        held = []
        directory = RecordingDirectory(tmp_path / "users.json", clock=clock)
        directory.ensure_user("1", "1.2.3.4")
        store = StatusStore(DAY, directory=directory, clock=clock)

        store.set_pending("1", "code")
        store.set_decision("1", "code", True)
        assert held == [False, False]
        assert directory.get("1")["step_statuses"]["code"]["status"] == "approved"

    def test_older_mirror_does_not_overwrite_newer(self, durable_directory, clock):
        durable_directory.ensure_user("1", "1.2.3.4")
        durable_directory.record_step_status("1", "code", {"status": "approved", "updated_at": clock() + 5})
        assert durable_directory.record_step_status("1", "code", {"status": "pending", "updated_at": clock()}) is False
        assert durable_directory.get("1")["step_statuses"]["code"]["status"] == "approved"

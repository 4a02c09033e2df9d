"""Tests for the periodic workers and configuration validation."""

import asyncio
import threading
from unittest.mock import patch

import pytest

import config
from stores.directory import UserDirectory
from workers.persister import DirectoryPersister
from workers.sweeper import Sweeper

from conftest import DAY


class StopLoop(Exception):
    pass


class TestSweeper:

    def test_run_once_reports_counts(self, status_store, identity, clock):
        status_store.set_pending("1", "code")
        identity.resolve("1.2.3.4")
        clock.advance(DAY + 1)

        sweeper = Sweeper(3600)
        sweeper.register_task("statuses", status_store.sweep)
        sweeper.register_task("users", identity.sweep)
        assert sweeper.run_once() == {"statuses": 1, "users": 1}

    def test_failing_task_does_not_stop_others(self):
        def boom():
            raise RuntimeError("broken")

        sweeper = Sweeper(3600)
        sweeper.register_task("bad", boom)
        sweeper.register_task("good", lambda: 3)
        assert sweeper.run_once() == {"good": 3}

    def test_loop_runs_each_interval(self):
        calls = []

        async def fake_sleep(delay):
            calls.append(delay)
            if len(calls) > 2:
                raise StopLoop

        sweeper = Sweeper(3600, sleep=fake_sleep)
        sweeper.register_task("count", lambda: calls.append("ran") or 0)
        with pytest.raises(StopLoop):
            asyncio.run(sweeper.run())
        assert calls == [3600, "ran", 3600]

    def test_rejects_bad_input(self):
        with pytest.raises(ValueError):
            Sweeper(0)
        with pytest.raises(ValueError):
            Sweeper(1).register_task("x", "not callable")


class TestValidateConfig:

    def test_missing_credentials_reported(self):
        with patch("config.TELEGRAM_TOKEN", ""), patch("config.TELEGRAM_CHAT_ID", ""):
            issues = config.validate_config()
        assert "TELEGRAM_TOKEN is required" in issues
        assert "TELEGRAM_CHAT_ID is required" in issues

    def test_valid_config(self):
        with patch("config.TELEGRAM_TOKEN", "123:abc"), patch("config.TELEGRAM_CHAT_ID", "-100"), \
                patch("config.STORAGE_MODE", "file"):
            assert config.validate_config() == []
            assert config.is_durable() is True

    def test_bad_storage_mode(self):
        with patch("config.STORAGE_MODE", "redis"):
            assert any("STORAGE_MODE" in i for i in config.validate_config())


class TestDirectoryPersister:

    def test_flush_runs_off_the_event_loop_thread(self, tmp_path, clock):
        class RecordingDirectory(UserDirectory):
            def flush(self):
                threads.append(threading.get_ident())
                return super().flush()

        threads = []
        directory = RecordingDirectory(tmp_path / "users.json", clock=clock)
        directory.find_or_create("1.2.3.4")

        assert asyncio.run(DirectoryPersister(directory).flush()) is True
        assert threads and threads[0] != threading.get_ident()
        assert (tmp_path / "users.json").exists()

    def test_loop_flushes_each_interval(self, durable_directory, tmp_path):
        calls = []

        async def fake_sleep(delay):
            calls.append(delay)
            if len(calls) > 1:
                raise StopLoop

        durable_directory.find_or_create("1.2.3.4")
        persister = DirectoryPersister(durable_directory, 2.0, sleep=fake_sleep)
        with pytest.raises(StopLoop):
            asyncio.run(persister.run())
        assert calls == [2.0, 2.0]
        assert durable_directory.dirty is False
        assert (tmp_path / "users.json").exists()

    def test_stop_writes_pending_changes(self, durable_directory, tmp_path):
        persister = DirectoryPersister(durable_directory, 3600)

        async def scenario():
            persister.start()
            durable_directory.find_or_create("1.2.3.4")
            await persister.stop()

        asyncio.run(scenario())
        assert durable_directory.dirty is False
        assert (tmp_path / "users.json").exists()

    def test_memory_directory_is_never_started(self, directory):
        persister = DirectoryPersister(directory)

        async def scenario():
            persister.start()
            return persister._task

        assert asyncio.run(scenario()) is None

    def test_rejects_bad_interval(self, directory):
        with pytest.raises(ValueError):
            DirectoryPersister(directory, 0)

import os
from unittest.mock import patch

import pytest
from conftest import multi_output_settings, studio_settings

from relay_backend.config_watcher import ConfigurationWatcher
from relay_backend.settings import dump_settings


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(dump_settings(studio_settings()), encoding="utf-8")
    return str(path)


@pytest.fixture
def running(make_switcher):
    return make_switcher(studio_settings())


def write_config(path, settings):
    with open(path, "w", encoding="utf-8") as f:
        f.write(dump_settings(settings))


def test_reload_applies_the_new_file(config_path, running, notifier):
    new_settings = multi_output_settings()
    write_config(config_path, new_settings)
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert watcher.reload()

    assert running.get_settings() == new_settings
    assert notifier.settings == [new_settings]


def test_unparseable_file_keeps_the_running_configuration(config_path, running):
    original = running.get_settings()
    with open(config_path, "w", encoding="utf-8") as f:
        f.write('{"Routes": [')
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert not watcher.reload()
    assert running.get_settings() is original


def test_invalid_file_keeps_the_running_configuration(config_path, running, caplog):
    original = running.get_settings()
    write_config(config_path, studio_settings(default_source="Piano"))
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert not watcher.reload()
    assert running.get_settings() is original
    assert "DefaultSource references unknown source 'Piano'." in caplog.text


def test_server_port_change_is_not_applied(config_path, running, notifier, caplog):
    write_config(config_path, studio_settings(server_port=6000))
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert watcher.reload()

    assert running.get_settings().server_port == 5000
    assert notifier.settings == []
    assert "Restart the server to apply the new port" in caplog.text


def test_port_is_preserved_when_other_fields_change(config_path, running):
    write_config(config_path, multi_output_settings(server_port=6000))
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert watcher.reload()

    assert running.get_settings().server_port == 5000
    assert running.get_settings().sources == ["Mic1", "Mic2", "Line"]


def test_read_is_retried_on_io_errors(config_path, running):
    sleep = RecordingSleep()
    watcher = ConfigurationWatcher(config_path, running, read_retries=5, retry_delay=0.2, sleep=sleep)
    settings = multi_output_settings()

    with patch("relay_backend.config_watcher.load_settings",
               side_effect=[PermissionError("locked"), OSError("busy"), settings]) as load:
        assert watcher.read_settings() == settings

    assert load.call_count == 3
    assert sleep.calls == [0.2, 0.2]


def test_read_gives_up_after_the_last_attempt(tmp_path, running):
    sleep = RecordingSleep()
    watcher = ConfigurationWatcher(str(tmp_path / "missing.json"), running, read_retries=3, sleep=sleep)

    assert watcher.read_settings() is None
    assert len(sleep.calls) == 2


def test_poll_once_waits_for_the_file_to_settle(config_path, running):
    final_settings = multi_output_settings()

    def still_writing(call_number):
        if call_number == 1:
            write_config(config_path, final_settings)
            os.utime(config_path, (2_000_000_000, 2_000_000_000))

    sleep = RecordingSleep(on_sleep=still_writing)
    watcher = ConfigurationWatcher(config_path, running, debounce_seconds=0.3, sleep=sleep)

    assert watcher.poll_once()

    assert sleep.calls == [0.3, 0.3]
    assert running.get_settings() == final_settings
    assert not watcher.poll_once()


def test_poll_once_ignores_a_deleted_file(config_path, running, caplog):
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())
    watcher.poll_once()
    os.remove(config_path)

    assert not watcher.poll_once()
    assert running.get_settings() == studio_settings()
    assert "disappeared" in caplog.text


def test_start_and_stop(config_path, running):
    watcher = ConfigurationWatcher(config_path, running, poll_interval=0.01)

    watcher.start()
    assert watcher.worker_thread.is_alive()
    watcher.stop()

    assert watcher.worker_thread is None


def test_undecodable_file_is_ignored(config_path, running, caplog):
    original = running.get_settings()
    with open(config_path, "wb") as f:
        f.write(b'\xff\xfe{"Routes": []}')
    watcher = ConfigurationWatcher(config_path, running, sleep=RecordingSleep())

    assert watcher.read_settings() is None
    assert not watcher.reload()
    assert running.get_settings() is original
    assert "not valid UTF-8" in caplog.text

"""Tests for the settings store."""

import json

import pytest

from co2monitor.settings import SCHEMA, Settings, SettingsWriteError, default_settings_path


def test_defaults():
    settings = Settings()
    assert settings.get_int("update-interval") == 10
    assert settings.get_string("profile-name") == "default"
    assert settings.get_double("daily-total-g") == 0.0
    assert settings.get_boolean("safe-mode") is False


def test_unknown_key():
    with pytest.raises(KeyError):
        Settings().get("no-such-key")
    with pytest.raises(KeyError):
        Settings().set("no-such-key", 1)


def test_type_checking():
    settings = Settings()
    with pytest.raises(TypeError):
        settings.set("update-interval", "10")
    with pytest.raises(TypeError):
        settings.set("safe-mode", 1)
    with pytest.raises(TypeError):
        settings.set("update-interval", True)


def test_int_accepted_for_double():
    settings = Settings()
    settings.set("daily-total-g", 3)
    assert isinstance(settings.get("daily-total-g"), float)


def test_save_and_load(tmp_path):
    path = tmp_path / "cfg" / "settings.json"
    settings = Settings(path)
    settings.set_many({"update-interval": 30, "profile-name": "work"})

    reloaded = Settings(path)
    reloaded.load()

    assert reloaded.get_int("update-interval") == 30
    assert reloaded.get_string("profile-name") == "work"


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    settings = Settings(path)
    settings.load()

    assert settings.get_int("update-interval") == SCHEMA["update-interval"][1]


def test_mistyped_and_unknown_entries_are_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"update-interval": "fast", "whatever": 1, "history-days": 7}))
    settings = Settings(path)
    settings.load()

    assert settings.get_int("update-interval") == 10
    assert settings.get_int("history-days") == 7


def test_failed_write_keeps_memory_value(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    settings = Settings(blocker / "settings.json")

    with pytest.raises(SettingsWriteError):
        settings.set("update-interval", 20)

    assert settings.get_int("update-interval") == 20


def test_reset_restores_default():
    settings = Settings()
    settings.set("smoothing-window", 12)
    settings.reset("smoothing-window")
    assert settings.get_int("smoothing-window") == 5


def test_change_notifications():
    settings = Settings()
    seen: list[str] = []
    handler = settings.connect(seen.append)

    settings.set("update-interval", 15)
    settings.set("update-interval", 15)  # unchanged, no signal
    settings.disconnect(handler)
    settings.set("update-interval", 20)

    assert seen == ["update-interval"]


def test_listener_errors_do_not_break_set():
    settings = Settings()

    def broken(key):
        raise RuntimeError(key)

    settings.connect(broken)
    settings.set("display-unit", "mg")
    assert settings.get_string("display-unit") == "mg"


def test_default_path_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CO2MONITOR_SETTINGS", str(tmp_path / "x.json"))
    assert default_settings_path() == tmp_path / "x.json"

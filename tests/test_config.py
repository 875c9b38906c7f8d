import importlib
from pathlib import Path

import pytest

from reading_tracker import config
from reading_tracker.config import (
    PROJECT_ROOT,
    _coerce_path,
    _env_bool,
    _env_float,
    _env_int,
    _env_path,
    _normalize_locale,
)
from reading_tracker.config import base as config_base


def test_env_bool_returns_default_when_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_BOOL_FLAG", raising=False)

    assert _env_bool("TEST_BOOL_FLAG", default=True) is True
    assert _env_bool("TEST_BOOL_FLAG", default=False) is False


@pytest.mark.parametrize("value", ["1", "true", "TRUE", "Yes", "on", "  YeS  "])
def test_env_bool_truthy_values(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("TEST_BOOL_FLAG", value)

    assert _env_bool("TEST_BOOL_FLAG") is True


@pytest.mark.parametrize("value", ["0", "false", "no", "off", "", "not-truthy"])
def test_env_bool_non_truthy_values(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("TEST_BOOL_FLAG", value)

    assert _env_bool("TEST_BOOL_FLAG", default=True) is False


@pytest.mark.parametrize("value,expected", [("0", 0), ("42", 42), ("-5", -5), (" 10 ", 10)])
def test_env_int_parses_values(monkeypatch: pytest.MonkeyPatch, value: str, expected: int) -> None:
    monkeypatch.setenv("TEST_INT", value)

    assert _env_int("TEST_INT", 123) == expected


def test_env_int_warns_and_falls_back(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("TEST_INT", "not-an-int")

    assert _env_int("TEST_INT", 5) == 5
    assert "Invalid value for TEST_INT" in capsys.readouterr().err


def test_env_float_parses_and_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT", "0.25")
    assert _env_float("TEST_FLOAT", 1.0) == pytest.approx(0.25)

    monkeypatch.setenv("TEST_FLOAT", "soon")
    assert _env_float("TEST_FLOAT", 1.0) == pytest.approx(1.0)

    monkeypatch.delenv("TEST_FLOAT")
    assert _env_float("TEST_FLOAT", 2.5) == pytest.approx(2.5)


def test_coerce_path_resolves_relative_to_project_root() -> None:
    assert _coerce_path("data") == (PROJECT_ROOT / "data").resolve()
    assert _coerce_path("/tmp/books") == Path("/tmp/books")
    assert _coerce_path("~/books") == Path.home() / "books"


def test_env_path_reads_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TEST_PATH", str(tmp_path / "store"))

    assert _env_path("TEST_PATH", "unused") == tmp_path / "store"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("en_GB", "en-GB"), (" fr-CA ", "fr-CA"), ("C", "en-US"), ("POSIX", "en-US")],
)
def test_normalize_locale(value: str, expected: str) -> None:
    assert _normalize_locale(value) == expected


def test_normalize_locale_uses_host_then_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_base.locale, "getlocale", lambda: ("de_DE", "UTF-8"))
    assert _normalize_locale("") == "de-DE"

    monkeypatch.setattr(config_base.locale, "getlocale", lambda: (None, None))
    assert _normalize_locale(None, "es-ES") == "es-ES"


def test_defaults_shape_matches_capture_settings() -> None:
    assert config.AUDIO_BLOCK_SIZE == 1024
    assert config.LEVEL_HISTORY_LENGTH == 30
    assert config.LEVEL_SAMPLE_STRIDE == 5
    assert config.LEVEL_FLOOR == pytest.approx(0.05)
    assert config.RECOGNIZER_WIRE_SAMPLE_RATE == 24000
    assert config.RECOGNIZER_LOCALE == "en-US"
    assert config.VERBOSE_LOGGING is False


def test_reload_applies_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUDIO_BLOCK_SIZE", "512")
    monkeypatch.setenv("RECOGNIZER_LOCALE", "pt_BR")
    monkeypatch.setenv("READING_TRACKER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("OPENAI_API_KEY", "  sk-live  ")
    monkeypatch.setenv("READING_TRACKER_VERBOSE", "yes")

    try:
        reloaded = importlib.reload(config_base)
        assert reloaded.AUDIO_BLOCK_SIZE == 512
        assert reloaded.RECOGNIZER_LOCALE == "pt-BR"
        assert reloaded.DATA_DIRECTORY == tmp_path
        assert reloaded.OPENAI_API_KEY == "sk-live"
        assert reloaded.REALTIME_HEADERS["Authorization"] == "Bearer sk-live"
        assert reloaded.VERBOSE_LOGGING is True
    finally:
        monkeypatch.undo()
        importlib.reload(config_base)

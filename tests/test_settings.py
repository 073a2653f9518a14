from pathlib import Path

import pytest

from compile_runner.settings import Settings, load_settings, parse_size


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2mb", 2 * 1024 * 1024),
        ("512kb", 512 * 1024),
        ("100", 100),
        ("10b", 10),
        ("1.5m", int(1.5 * 1024 * 1024)),
        ("1GB", 1024**3),
    ],
)
def test_parse_size(value, expected):
    assert parse_size(value) == expected


@pytest.mark.parametrize("value", ["", "lots", "2tb", "-1mb"])
def test_parse_size_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_size(value)


def test_defaults(monkeypatch):
    for name in ("PORT", "PUYA_BIN", "PUYA_TIMEOUT_MS", "BODY_LIMIT", "ARTIFACT_SUFFIXES"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()
    assert settings.port == 3000
    assert settings.compiler_command == ("puya-ts",)
    assert settings.timeout_ms == 20000
    assert settings.max_body_bytes == 2 * 1024 * 1024
    assert settings.artifact_suffixes == (".arc32.json", ".arc56.json")
    assert settings.sandbox_root.is_absolute()


def test_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("PUYA_BIN", "npx puya-ts")
    monkeypatch.setenv("PUYA_TIMEOUT_MS", "500")
    monkeypatch.setenv("BODY_LIMIT", "1kb")
    monkeypatch.setenv("SANDBOX_ROOT", str(tmp_path))
    monkeypatch.setenv("ARTIFACT_SUFFIXES", ".arc56.json, .teal ,")

    settings = load_settings()
    assert settings.port == 8080
    assert settings.compiler_command == ("npx", "puya-ts")
    assert settings.timeout_ms == 500
    assert settings.max_body_bytes == 1024
    assert settings.sandbox_root == Path(tmp_path).resolve()
    assert settings.artifact_suffixes == (".arc56.json", ".teal")


def test_rejects_non_positive_timeout():
    with pytest.raises(ValueError):
        Settings(timeout_ms=0)


def test_rejects_empty_command(monkeypatch):
    monkeypatch.setenv("PUYA_BIN", "   ")
    with pytest.raises(ValueError):
        load_settings()

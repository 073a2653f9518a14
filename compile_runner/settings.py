from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

_SIZE_UNITS = {"": 1, "b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


def parse_size(value: str) -> int:
    """Parse a human body-size limit such as ``2mb`` or ``512kb`` into bytes."""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([kmg]?b?)\s*", value.lower())
    if match is None:
        raise ValueError(f"invalid size: {value!r}")
    number, unit = match.groups()
    if unit in ("k", "m", "g"):
        unit += "b"
    return int(float(number) * _SIZE_UNITS[unit])


def _split_command(value: str) -> tuple[str, ...]:
    parts = tuple(shlex.split(value))
    if not parts:
        raise ValueError("command must not be empty")
    return parts


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    compiler_command: tuple[str, ...] = field(
        default_factory=lambda: _split_command(os.getenv("PUYA_BIN", "puya-ts"))
    )
    client_generator_command: tuple[str, ...] = field(
        default_factory=lambda: _split_command(os.getenv("ALGOKIT_BIN", "algokit"))
    )
    timeout_ms: int = field(
        default_factory=lambda: int(os.getenv("PUYA_TIMEOUT_MS", "20000"))
    )
    max_body_bytes: int = field(
        default_factory=lambda: parse_size(os.getenv("BODY_LIMIT", "2mb"))
    )
    sandbox_root: Path = field(
        default_factory=lambda: Path(os.getenv("SANDBOX_ROOT", "tmp")).resolve()
    )
    template_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("PUYA_TEMPLATE_DIR", "/tmp/puya-template")
        )
    )
    artifact_suffixes: tuple[str, ...] = field(
        default_factory=lambda: _split_list(
            os.getenv("ARTIFACT_SUFFIXES", ".arc32.json,.arc56.json")
        )
    )
    client_extension: str = field(
        default_factory=lambda: os.getenv("CLIENT_EXTENSION", "ts")
    )
    log_tail_chars: int = field(
        default_factory=lambda: int(os.getenv("LOG_TAIL_CHARS", "4000"))
    )
    tolerated_stderr_markers: tuple[str, ...] = field(
        default_factory=lambda: _split_list(
            os.getenv("TOLERATED_STDERR_MARKERS", "SuppressedError")
        )
    )
    default_filename: str = field(
        default_factory=lambda: os.getenv("DEFAULT_FILENAME", "contract.algo.ts")
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


def load_settings() -> Settings:
    """Read process-wide settings once, at startup."""
    return Settings()

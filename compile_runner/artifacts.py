from __future__ import annotations

import base64
from pathlib import Path
from typing import Callable, Iterable

from compile_runner.errors import NoArtifactsProduced
from compile_runner.models import ArtifactFile

ArtifactSet = dict[str, ArtifactFile]
ArtifactPredicate = Callable[[str], bool]


def collect_artifacts(root: Path) -> ArtifactSet:
    """Read every regular file under ``root``, keyed by its relative path.

    Files are walked depth-first in lexical order. UTF-8 files are returned as
    text, anything else base64 encoded. A missing ``root`` yields an empty set.
    """
    artifacts: ArtifactSet = {}
    if root.is_dir():
        _walk(root, root, artifacts)
    return artifacts


def _walk(root: Path, current: Path, artifacts: ArtifactSet) -> None:
    for entry in sorted(current.iterdir(), key=lambda p: p.name):
        if entry.is_symlink():
            continue
        if entry.is_dir():
            _walk(root, entry, artifacts)
        elif entry.is_file():
            artifacts[entry.relative_to(root).as_posix()] = _read(entry)


def _read(path: Path) -> ArtifactFile:
    data = path.read_bytes()
    try:
        return ArtifactFile(encoding="utf8", data=data.decode("utf-8"))
    except UnicodeDecodeError:
        return ArtifactFile(
            encoding="base64", data=base64.b64encode(data).decode("ascii")
        )


def filter_artifacts(
    artifacts: ArtifactSet, predicate: ArtifactPredicate
) -> ArtifactSet:
    return {name: item for name, item in artifacts.items() if predicate(name)}


def suffix_filter(suffixes: Iterable[str]) -> ArtifactPredicate:
    """Keep names ending in one of ``suffixes``; no suffixes keeps everything."""
    wanted = tuple(suffixes)

    def _matches(name: str) -> bool:
        return not wanted or name.endswith(wanted)

    return _matches


def select_artifacts(
    artifacts: ArtifactSet, predicate: ArtifactPredicate, description: str = "matching"
) -> ArtifactSet:
    selected = filter_artifacts(artifacts, predicate)
    if not selected:
        raise NoArtifactsProduced(f"No {description} files produced")
    return selected

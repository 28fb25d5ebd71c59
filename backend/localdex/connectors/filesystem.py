"""Filesystem connector.

The cursor is a JSON snapshot of every indexed file (relative path mapped to
``[mtime_ns, size]``). Comparing the snapshot with a fresh walk yields created,
updated and deleted changes. Cursors are attached every ``checkpoint_every``
changes and once more when the walk completes, so an interrupted run resumes
from the last checkpoint and re-detects anything after it.
"""

from __future__ import annotations

import fnmatch
import os
import threading
from pathlib import Path
from typing import Iterator

import orjson

from localdex.connectors.base import ChangeEvent
from localdex.core.errors import ConnectorError, InvalidInputError
from localdex.core.logging import get_logger
from localdex.ingest.loaders import guess_mime
from localdex.models.entities import (
    AuthCapability,
    ChangeType,
    ConfigKey,
    ConnectorType,
    Credentials,
    RawDocument,
    RawDocumentChange,
    Source,
    SyncCheckpoint,
)

logger = get_logger(__name__)

CURSOR_VERSION = 1

FILESYSTEM_TYPE = ConnectorType(
    id="filesystem",
    name="Local files",
    description="Index text, markdown, e-mail and office files under a directory.",
    auth_capability=AuthCapability.NONE,
    config_keys=[
        ConfigKey(key="path", label="Root directory", required=True),
        ConfigKey(key="include", label="Include globs", description="Comma separated, braces allowed"),
        ConfigKey(key="exclude", label="Exclude globs", description="Comma separated, braces allowed"),
    ],
)

Snapshot = dict[str, list[int]]


class FilesystemConnector:
    """Walks a directory tree and reports changes against the previous snapshot."""

    def __init__(
        self,
        default_include: str = "",
        default_exclude: str = "",
        checkpoint_every: int = 50,
    ) -> None:
        self.default_include = default_include
        self.default_exclude = default_exclude
        self.checkpoint_every = max(1, checkpoint_every)

    def open(
        self,
        source: Source,
        cursor: str | None,
        credentials: Credentials | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[ChangeEvent]:
        root_value = source.config.get("path")
        if not root_value:
            raise InvalidInputError(f"source {source.id} has no path configured")
        root = Path(root_value).expanduser()
        previous = decode_cursor(cursor)
        include = source.config.get("include") or self.default_include
        exclude = source.config.get("exclude") or self.default_exclude
        return self._iter_changes(source, root, previous, include, exclude, cancel)

    def _iter_changes(
        self,
        source: Source,
        root: Path,
        previous: Snapshot,
        include: str,
        exclude: str,
        cancel: threading.Event | None,
    ) -> Iterator[ChangeEvent]:
        if not root.is_dir():
            raise ConnectorError(f"{root} is not a readable directory")

        state: Snapshot = dict(previous)
        pending: list[tuple[ChangeType, str, os.stat_result | None]] = []
        seen: set[str] = set()
        for path in _walk(root):
            rel = path.relative_to(root).as_posix()
            if not _matches_patterns(rel, include, exclude):
                continue
            try:
                stat = path.stat()
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", path, exc)
                continue
            seen.add(rel)
            signature = [stat.st_mtime_ns, stat.st_size]
            known = previous.get(rel)
            if known is None:
                pending.append((ChangeType.CREATED, rel, stat))
            elif list(known) != signature:
                pending.append((ChangeType.UPDATED, rel, stat))
        for rel in sorted(previous):
            if rel not in seen:
                pending.append((ChangeType.DELETED, rel, None))

        emitted = 0
        for change_type, rel, stat in pending:
            if cancel is not None and cancel.is_set():
                return
            path = root / rel
            if change_type is ChangeType.DELETED:
                state.pop(rel, None)
                document = RawDocument(source_id=source.id, uri=path.as_posix(), mime_type=guess_mime(rel))
            else:
                try:
                    content = path.read_bytes()
                except OSError as exc:
                    logger.warning("Cannot read %s: %s", path, exc)
                    continue
                state[rel] = [stat.st_mtime_ns, stat.st_size]
                document = RawDocument(
                    source_id=source.id,
                    uri=path.as_posix(),
                    mime_type=guess_mime(rel),
                    content=content,
                    metadata={"path": rel, "size": stat.st_size},
                )
            emitted += 1
            is_checkpoint = emitted % self.checkpoint_every == 0
            yield RawDocumentChange(
                type=change_type,
                document=document,
                cursor=encode_cursor(state) if is_checkpoint else None,
            )
        yield SyncCheckpoint(cursor=encode_cursor(state))


def filesystem_builder(default_include: str = "", default_exclude: str = "", checkpoint_every: int = 50):
    def build() -> FilesystemConnector:
        return FilesystemConnector(default_include, default_exclude, checkpoint_every)

    return build


def encode_cursor(snapshot: Snapshot) -> str:
    payload = {"v": CURSOR_VERSION, "files": snapshot}
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS).decode("utf-8")


def decode_cursor(cursor: str | None) -> Snapshot:
    """Return the snapshot in ``cursor``; anything unrecognised restarts from empty."""
    if not cursor:
        return {}
    try:
        payload = orjson.loads(cursor)
    except orjson.JSONDecodeError:
        logger.warning("Ignoring unreadable filesystem cursor")
        return {}
    if not isinstance(payload, dict) or payload.get("v") != CURSOR_VERSION:
        return {}
    files = payload.get("files") or {}
    return {str(rel): list(sig) for rel, sig in files.items()}


# ---------------------------------------------------------------------------
# Path matching helpers
# ---------------------------------------------------------------------------


def _walk(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def _matches_patterns(rel: str, include: str | None, exclude: str | None) -> bool:
    candidate = "/" + rel
    if exclude and any(fnmatch.fnmatch(candidate, pattern) for pattern in split_patterns(exclude)):
        return False
    if include:
        return any(fnmatch.fnmatch(candidate, pattern) for pattern in split_patterns(include))
    return True


def split_patterns(pattern: str) -> list[str]:
    """Split a comma separated glob list and expand brace alternatives."""
    patterns: list[str] = []
    for part in _split_top_level(pattern):
        patterns.extend(_expand_braces(part))
    return patterns


def _split_top_level(pattern: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in pattern:
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(0, depth - 1)
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def _expand_braces(pattern: str) -> list[str]:
    start = pattern.find("{")
    end = pattern.find("}", start + 1)
    if start == -1 or end == -1:
        return [pattern]
    prefix, suffix = pattern[:start], pattern[end + 1 :]
    expanded: list[str] = []
    for option in pattern[start + 1 : end].split(","):
        expanded.extend(_expand_braces(f"{prefix}{option.strip()}{suffix}"))
    return expanded


__all__ = [
    "FILESYSTEM_TYPE",
    "FilesystemConnector",
    "filesystem_builder",
    "encode_cursor",
    "decode_cursor",
    "split_patterns",
]

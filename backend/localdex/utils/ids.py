"""ID helpers."""

from __future__ import annotations

import uuid

from localdex.utils.hashing import sha256_text


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def document_id(source_id: str, uri: str) -> str:
    """Stable document identifier for a (source, URI) pair."""
    digest = sha256_text("\0".join((source_id, uri)))
    return f"doc_{digest[:32]}"


def chunk_id(document_id: str, position: int) -> str:
    """Stable chunk identifier for a position inside a document."""
    digest = sha256_text("\0".join((document_id, str(position))))
    return f"chk_{digest[:32]}"

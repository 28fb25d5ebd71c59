"""SQLite-backed stores sharing one :class:`SQLiteDatabase`."""

from __future__ import annotations

import sqlite3
from array import array
from datetime import timedelta
from typing import Any, Iterator, Sequence

import orjson

from localdex.core.errors import AlreadyExistsError, NotFoundError
from localdex.db.sqlite import SQLiteDatabase, iter_rows
from localdex.models.entities import (
    Chunk,
    Credentials,
    Document,
    Exclusion,
    OAuthCredentials,
    PATCredentials,
    Source,
    SyncState,
)
from localdex.models.scheduling import ScheduledTask, TaskResult
from localdex.utils.time import from_ms, to_ms


def _dumps(value: Any) -> str:
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")


def _loads(value: str | None) -> Any:
    if not value:
        return {}
    return orjson.loads(value)


def _vector_to_blob(vector: list[float] | None) -> bytes | None:
    if vector is None:
        return None
    return array("f", vector).tobytes()


def _blob_to_vector(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


class SQLiteSourceStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def save(self, source: Source) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO sources (id, type, name, config_json, authorization_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    type = excluded.type,
                    name = excluded.name,
                    config_json = excluded.config_json,
                    authorization_id = excluded.authorization_id,
                    updated_at = excluded.updated_at
                """,
                (
                    source.id,
                    source.type,
                    source.name,
                    _dumps(source.config),
                    source.authorization_id,
                    to_ms(source.created_at),
                    to_ms(source.updated_at),
                ),
            )

    def get(self, source_id: str) -> Source:
        row = self.db.query_one("SELECT * FROM sources WHERE id = ?", [source_id])
        if row is None:
            raise NotFoundError(f"source {source_id} not found")
        return _row_to_source(row)

    def list(self) -> list[Source]:
        rows = self.db.query("SELECT * FROM sources ORDER BY created_at, id")
        return [_row_to_source(row) for row in rows]

    def delete(self, source_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"source {source_id} not found")


class SQLiteDocumentStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def save_document(self, document: Document) -> None:
        with self.db.transaction() as cur:
            self._upsert_document(cur, document)

    def save_chunks(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        with self.db.transaction() as cur:
            if cur.execute("SELECT 1 FROM documents WHERE id = ?", (document_id,)).fetchone() is None:
                raise NotFoundError(f"document {document_id} not found")
            self._replace_chunks(cur, document_id, chunks)

    def replace_document(self, document: Document, chunks: Sequence[Chunk]) -> None:
        with self.db.transaction() as cur:
            self._upsert_document(cur, document)
            self._replace_chunks(cur, document.id, chunks)

    def _upsert_document(self, cur: sqlite3.Cursor, document: Document) -> None:
        try:
            cur.execute(
                """
                INSERT INTO documents (id, source_id, uri, title, content, parent_id, meta_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    source_id = excluded.source_id,
                    uri = excluded.uri,
                    title = excluded.title,
                    content = excluded.content,
                    parent_id = excluded.parent_id,
                    meta_json = excluded.meta_json,
                    updated_at = excluded.updated_at
                """,
                (
                    document.id,
                    document.source_id,
                    document.uri,
                    document.title,
                    document.content,
                    document.parent_id,
                    _dumps(document.metadata),
                    to_ms(document.created_at),
                    to_ms(document.updated_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise AlreadyExistsError(
                f"document {document.uri} already stored for source {document.source_id}"
            ) from exc

    def _replace_chunks(self, cur: sqlite3.Cursor, document_id: str, chunks: Sequence[Chunk]) -> None:
        cur.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        cur.executemany(
            """
            INSERT INTO chunks (id, document_id, content, position, embedding, meta_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    chunk.id,
                    document_id,
                    chunk.content,
                    chunk.position,
                    _vector_to_blob(chunk.embedding),
                    _dumps(chunk.metadata),
                )
                for chunk in chunks
            ],
        )

    def get_document(self, document_id: str) -> Document:
        row = self.db.query_one("SELECT * FROM documents WHERE id = ?", [document_id])
        if row is None:
            raise NotFoundError(f"document {document_id} not found")
        return _row_to_document(row)

    def get_document_by_uri(self, source_id: str, uri: str) -> Document:
        row = self.db.query_one(
            "SELECT * FROM documents WHERE source_id = ? AND uri = ?", [source_id, uri]
        )
        if row is None:
            raise NotFoundError(f"document {uri} not found in source {source_id}")
        return _row_to_document(row)

    def get_chunk(self, chunk_id: str) -> Chunk:
        row = self.db.query_one("SELECT * FROM chunks WHERE id = ?", [chunk_id])
        if row is None:
            raise NotFoundError(f"chunk {chunk_id} not found")
        return _row_to_chunk(row)

    def get_chunks(self, document_id: str) -> list[Chunk]:
        rows = self.db.query(
            "SELECT * FROM chunks WHERE document_id = ? ORDER BY position", [document_id]
        )
        return [_row_to_chunk(row) for row in rows]

    def list_documents(self, source_id: str | None = None) -> list[Document]:
        if source_id is None:
            rows = self.db.query("SELECT * FROM documents ORDER BY id")
        else:
            rows = self.db.query(
                "SELECT * FROM documents WHERE source_id = ? ORDER BY id", [source_id]
            )
        return [_row_to_document(row) for row in rows]

    def iter_chunks(self, source_ids: Sequence[str] | None = None) -> Iterator[tuple[Chunk, str]]:
        sql = """
            SELECT c.*, d.source_id AS source_id
            FROM chunks c JOIN documents d ON d.id = c.document_id
        """
        params: list[Any] = []
        if source_ids:
            placeholders = ",".join("?" for _ in source_ids)
            sql += f" WHERE d.source_id IN ({placeholders})"
            params.extend(source_ids)
        sql += " ORDER BY c.document_id, c.position"
        for row in iter_rows(self.db.execute(sql, params)):
            yield _row_to_chunk(row), row["source_id"]

    def delete_document(self, document_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"document {document_id} not found")

    def delete_by_source(self, source_id: str) -> int:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM documents WHERE source_id = ?", (source_id,))
            return cur.rowcount


class SQLiteSyncStateStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def save(self, state: SyncState) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO sync_states (source_id, cursor, last_sync) VALUES (?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET cursor = excluded.cursor, last_sync = excluded.last_sync
                """,
                (state.source_id, state.cursor, to_ms(state.last_sync)),
            )

    def get(self, source_id: str) -> SyncState:
        row = self.db.query_one("SELECT * FROM sync_states WHERE source_id = ?", [source_id])
        if row is None:
            raise NotFoundError(f"no sync state for source {source_id}")
        return SyncState(source_id=row["source_id"], cursor=row["cursor"], last_sync=from_ms(row["last_sync"]))

    def delete(self, source_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM sync_states WHERE source_id = ?", (source_id,))


class SQLiteExclusionStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def add(self, exclusion: Exclusion) -> None:
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO exclusions (id, source_id, document_id, uri, reason, excluded_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        exclusion.id,
                        exclusion.source_id,
                        exclusion.document_id,
                        exclusion.uri,
                        exclusion.reason,
                        to_ms(exclusion.excluded_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise AlreadyExistsError(f"exclusion {exclusion.id} already exists") from exc

    def remove(self, exclusion_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM exclusions WHERE id = ?", (exclusion_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"exclusion {exclusion_id} not found")

    def get(self, exclusion_id: str) -> Exclusion:
        row = self.db.query_one("SELECT * FROM exclusions WHERE id = ?", [exclusion_id])
        if row is None:
            raise NotFoundError(f"exclusion {exclusion_id} not found")
        return _row_to_exclusion(row)

    def get_by_source(self, source_id: str) -> list[Exclusion]:
        rows = self.db.query(
            "SELECT * FROM exclusions WHERE source_id = ? ORDER BY excluded_at, id", [source_id]
        )
        return [_row_to_exclusion(row) for row in rows]

    def is_excluded(self, source_id: str, uri: str) -> bool:
        row = self.db.query_one(
            "SELECT 1 FROM exclusions WHERE source_id = ? AND uri = ? LIMIT 1", [source_id, uri]
        )
        return row is not None

    def list(self) -> list[Exclusion]:
        rows = self.db.query("SELECT * FROM exclusions ORDER BY excluded_at, id")
        return [_row_to_exclusion(row) for row in rows]

    def delete_by_source(self, source_id: str) -> int:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM exclusions WHERE source_id = ?", (source_id,))
            return cur.rowcount


class SQLiteCredentialStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def save(self, credentials: Credentials) -> None:
        oauth = credentials.oauth
        oauth_json = None
        if oauth is not None:
            oauth_json = _dumps(
                {
                    "access_token": oauth.access_token,
                    "refresh_token": oauth.refresh_token,
                    "token_type": oauth.token_type,
                    "expiry": to_ms(oauth.expiry),
                }
            )
        pat_json = _dumps({"token": credentials.pat.token}) if credentials.pat is not None else None
        try:
            with self.db.transaction() as cur:
                cur.execute(
                    """
                    INSERT INTO credentials (id, source_id, account_identifier, oauth_json, pat_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        source_id = excluded.source_id,
                        account_identifier = excluded.account_identifier,
                        oauth_json = excluded.oauth_json,
                        pat_json = excluded.pat_json,
                        updated_at = excluded.updated_at
                    """,
                    (
                        credentials.id,
                        credentials.source_id,
                        credentials.account_identifier,
                        oauth_json,
                        pat_json,
                        to_ms(credentials.created_at),
                        to_ms(credentials.updated_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise AlreadyExistsError(
                f"source {credentials.source_id} already has credentials"
            ) from exc

    def get(self, credentials_id: str) -> Credentials:
        row = self.db.query_one("SELECT * FROM credentials WHERE id = ?", [credentials_id])
        if row is None:
            raise NotFoundError(f"credentials {credentials_id} not found")
        return _row_to_credentials(row)

    def get_by_source(self, source_id: str) -> Credentials:
        row = self.db.query_one("SELECT * FROM credentials WHERE source_id = ?", [source_id])
        if row is None:
            raise NotFoundError(f"no credentials for source {source_id}")
        return _row_to_credentials(row)

    def list(self) -> list[Credentials]:
        rows = self.db.query("SELECT * FROM credentials ORDER BY id")
        return [_row_to_credentials(row) for row in rows]

    def delete(self, credentials_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM credentials WHERE id = ?", (credentials_id,))
            if cur.rowcount == 0:
                raise NotFoundError(f"credentials {credentials_id} not found")

    def delete_by_source(self, source_id: str) -> int:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM credentials WHERE source_id = ?", (source_id,))
            return cur.rowcount


class SQLiteSchedulerStore:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get_task(self, task_id: str) -> ScheduledTask | None:
        row = self.db.query_one("SELECT * FROM scheduled_tasks WHERE id = ?", [task_id])
        return _row_to_task(row) if row is not None else None

    def list_tasks(self) -> list[ScheduledTask]:
        rows = self.db.query("SELECT * FROM scheduled_tasks ORDER BY id")
        return [_row_to_task(row) for row in rows]

    def save_task(self, task: ScheduledTask) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO scheduled_tasks (id, name, interval_seconds, enabled, last_run, next_run, last_error, last_success)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    interval_seconds = excluded.interval_seconds,
                    enabled = excluded.enabled,
                    last_run = excluded.last_run,
                    next_run = excluded.next_run,
                    last_error = excluded.last_error,
                    last_success = excluded.last_success
                """,
                (
                    task.id,
                    task.name,
                    task.interval.total_seconds(),
                    int(task.enabled),
                    to_ms(task.last_run),
                    to_ms(task.next_run),
                    task.last_error,
                    to_ms(task.last_success),
                ),
            )

    def delete_task(self, task_id: str) -> None:
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
            cur.execute("DELETE FROM task_results WHERE task_id = ?", (task_id,))

    def record_result(self, result: TaskResult) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO task_results (task_id, started_at, ended_at, success, error, items_processed)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    result.task_id,
                    to_ms(result.started_at),
                    to_ms(result.ended_at),
                    int(result.success),
                    result.error,
                    result.items_processed,
                ),
            )

    def history(self, task_id: str, limit: int = 20) -> list[TaskResult]:
        rows = self.db.query(
            "SELECT * FROM task_results WHERE task_id = ? ORDER BY id DESC LIMIT ?",
            [task_id, limit],
        )
        return [
            TaskResult(
                task_id=row["task_id"],
                started_at=from_ms(row["started_at"]),
                ended_at=from_ms(row["ended_at"]),
                success=bool(row["success"]),
                error=row["error"],
                items_processed=row["items_processed"],
            )
            for row in rows
        ]

    def prune_history(self, keep: int) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                DELETE FROM task_results WHERE id IN (
                    SELECT id FROM (
                        SELECT id, ROW_NUMBER() OVER (PARTITION BY task_id ORDER BY id DESC) AS pos
                        FROM task_results
                    ) WHERE pos > ?
                )
                """,
                (keep,),
            )


# ---------------------------------------------------------------------------
# Row mapping helpers
# ---------------------------------------------------------------------------


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        type=row["type"],
        name=row["name"],
        config=_loads(row["config_json"]),
        authorization_id=row["authorization_id"],
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        source_id=row["source_id"],
        uri=row["uri"],
        title=row["title"],
        content=row["content"],
        parent_id=row["parent_id"],
        metadata=_loads(row["meta_json"]),
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        position=row["position"],
        embedding=_blob_to_vector(row["embedding"]),
        metadata=_loads(row["meta_json"]),
    )


def _row_to_exclusion(row: sqlite3.Row) -> Exclusion:
    return Exclusion(
        id=row["id"],
        source_id=row["source_id"],
        document_id=row["document_id"],
        uri=row["uri"],
        reason=row["reason"],
        excluded_at=from_ms(row["excluded_at"]),
    )


def _row_to_credentials(row: sqlite3.Row) -> Credentials:
    oauth = None
    if row["oauth_json"]:
        payload = _loads(row["oauth_json"])
        oauth = OAuthCredentials(
            access_token=payload.get("access_token", ""),
            refresh_token=payload.get("refresh_token", ""),
            token_type=payload.get("token_type", "Bearer"),
            expiry=from_ms(payload.get("expiry")),
        )
    pat = None
    if row["pat_json"]:
        pat = PATCredentials(token=_loads(row["pat_json"]).get("token", ""))
    return Credentials(
        id=row["id"],
        source_id=row["source_id"],
        account_identifier=row["account_identifier"],
        oauth=oauth,
        pat=pat,
        created_at=from_ms(row["created_at"]),
        updated_at=from_ms(row["updated_at"]),
    )


def _row_to_task(row: sqlite3.Row) -> ScheduledTask:
    return ScheduledTask(
        id=row["id"],
        name=row["name"],
        interval=timedelta(seconds=row["interval_seconds"]),
        enabled=bool(row["enabled"]),
        last_run=from_ms(row["last_run"]),
        next_run=from_ms(row["next_run"]),
        last_error=row["last_error"],
        last_success=from_ms(row["last_success"]),
    )


__all__ = [
    "SQLiteSourceStore",
    "SQLiteDocumentStore",
    "SQLiteSyncStateStore",
    "SQLiteExclusionStore",
    "SQLiteCredentialStore",
    "SQLiteSchedulerStore",
]

"""Source lifecycle: creation, updates, cascade deletion and exclusions."""

from __future__ import annotations

from pathlib import Path

from localdex.connectors.filesystem import FILESYSTEM_TYPE, split_patterns
from localdex.connectors.registry import ConnectorRegistry
from localdex.core.errors import InvalidInputError, NotFoundError, SyncInProgressError
from localdex.core.logging import get_logger
from localdex.ingest.watcher import Watcher
from localdex.models.entities import Credentials, Document, Exclusion, OAuthCredentials, PATCredentials, Source
from localdex.retrieval.keyword_index import KeywordIndex
from localdex.retrieval.vector_index import VectorIndex
from localdex.stores import Stores
from localdex.sync.orchestrator import SyncOrchestrator
from localdex.utils.ids import new_id
from localdex.utils.time import utc_now

logger = get_logger(__name__)


class SourceService:
    """Keeps stores, indexes and the watcher consistent as sources change."""

    def __init__(
        self,
        stores: Stores,
        connectors: ConnectorRegistry,
        keyword_index: KeywordIndex | None = None,
        vector_index: VectorIndex | None = None,
        orchestrator: SyncOrchestrator | None = None,
        watcher: Watcher | None = None,
    ) -> None:
        self.stores = stores
        self.connectors = connectors
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.orchestrator = orchestrator
        self.watcher = watcher

    # Sources ------------------------------------------------------------

    def list_sources(self) -> list[Source]:
        return self.stores.sources.list()

    def get_source(self, source_id: str) -> Source:
        return self.stores.sources.get(source_id)

    def create_source(self, type_id: str, name: str, config: dict[str, str] | None = None) -> Source:
        config = dict(config or {})
        if not name.strip():
            raise InvalidInputError("source name must not be empty")
        self.connectors.validate_config(type_id, config)
        source = Source(id=new_id("src"), type=type_id, name=name.strip(), config=config)
        self.stores.sources.save(source)
        self.watch(source)
        logger.info("Source created", extra={"ctx_source_id": source.id, "ctx_type": type_id})
        return source

    def update_source(
        self,
        source_id: str,
        name: str | None = None,
        config: dict[str, str] | None = None,
    ) -> Source:
        source = self.stores.sources.get(source_id)
        if name is not None:
            if not name.strip():
                raise InvalidInputError("source name must not be empty")
            source.name = name.strip()
        if config is not None:
            self.connectors.validate_config(source.type, config)
            source.config = dict(config)
        source.updated_at = utc_now()
        self.stores.sources.save(source)
        self.watch(source)
        return source

    def delete_source(self, source_id: str) -> None:
        """Delete a source together with everything derived from it."""
        self.stores.sources.get(source_id)
        if self.orchestrator is not None and self.orchestrator.is_running(source_id):
            raise SyncInProgressError(source_id)
        if self.watcher is not None:
            self.watcher.remove_source(source_id)
        removed = self.stores.documents.delete_by_source(source_id)
        if self.keyword_index is not None:
            self.keyword_index.remove_source(source_id)
        if self.vector_index is not None:
            self.vector_index.remove_source(source_id)
        self.stores.sync_states.delete(source_id)
        self.stores.exclusions.delete_by_source(source_id)
        self.stores.credentials.delete_by_source(source_id)
        self.stores.sources.delete(source_id)
        logger.info("Source deleted", extra={"ctx_source_id": source_id, "ctx_documents": removed})

    def watch(self, source: Source) -> None:
        """Register a filesystem source with the watcher, if one is running."""
        if self.watcher is None or source.type != FILESYSTEM_TYPE.id:
            return
        root = Path(source.config.get("path", "")).expanduser()
        if not root.is_dir():
            logger.warning("Not watching %s: %s is not a directory", source.id, root)
            return
        self.watcher.add_source(
            source.id,
            root,
            include=split_patterns(source.config.get("include", "")),
            exclude=split_patterns(source.config.get("exclude", "")),
        )

    # Credentials --------------------------------------------------------

    def save_credentials(
        self,
        source_id: str,
        account_identifier: str = "",
        oauth: OAuthCredentials | None = None,
        pat: PATCredentials | None = None,
    ) -> Credentials:
        """Store or replace the single credentials row of a source."""
        source = self.stores.sources.get(source_id)
        if (oauth is None) == (pat is None):
            raise InvalidInputError("provide exactly one of OAuth tokens or a personal access token")
        try:
            credentials = self.stores.credentials.get_by_source(source_id)
            credentials.account_identifier = account_identifier
            credentials.oauth = oauth
            credentials.pat = pat
            credentials.updated_at = utc_now()
        except NotFoundError:
            credentials = Credentials(
                id=new_id("cred"),
                source_id=source_id,
                account_identifier=account_identifier,
                oauth=oauth,
                pat=pat,
            )
        self.stores.credentials.save(credentials)
        if source.authorization_id != credentials.id:
            source.authorization_id = credentials.id
            source.updated_at = utc_now()
            self.stores.sources.save(source)
        return credentials

    # Exclusions ---------------------------------------------------------

    def list_exclusions(self, source_id: str) -> list[Exclusion]:
        self.stores.sources.get(source_id)
        return self.stores.exclusions.get_by_source(source_id)

    def exclude(
        self,
        source_id: str,
        document_id: str | None = None,
        uri: str | None = None,
        reason: str = "",
    ) -> Exclusion:
        """Exclude a document from its source and drop it from storage and indexes.

        The document can be named by id or by URI; a URI that was never synced is
        still excluded so a later sync skips it.
        """
        self.stores.sources.get(source_id)
        if not document_id and not uri:
            raise InvalidInputError("either document_id or uri is required")
        document = self._find_document(source_id, document_id, uri)
        if document is not None:
            uri = document.uri
        exclusion = Exclusion(
            id=new_id("exc"),
            source_id=source_id,
            document_id=document.id if document is not None else "",
            uri=uri or "",
            reason=reason,
        )
        self.stores.exclusions.add(exclusion)
        if document is not None:
            self.stores.documents.delete_document(document.id)
            if self.keyword_index is not None:
                self.keyword_index.remove_document(document.id)
            if self.vector_index is not None:
                self.vector_index.remove_document(document.id)
        logger.info("Document excluded", extra={"ctx_source_id": source_id, "ctx_uri": exclusion.uri})
        return exclusion

    def remove_exclusion(self, exclusion_id: str) -> None:
        """Lift an exclusion; the document returns on the next sync that reports it."""
        self.stores.exclusions.remove(exclusion_id)

    def _find_document(self, source_id: str, document_id: str | None, uri: str | None) -> Document | None:
        if document_id:
            document = self.stores.documents.get_document(document_id)
            if document.source_id != source_id:
                raise InvalidInputError(f"document {document_id} does not belong to source {source_id}")
            return document
        try:
            return self.stores.documents.get_document_by_uri(source_id, uri or "")
        except NotFoundError:
            return None


__all__ = ["SourceService"]

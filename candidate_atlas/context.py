"""
Runtime wiring for one ingestion run.

The context owns the database handle; commands that never touch the database
(preview, map-headers) do not open one.
"""
import logging
from typing import Optional

from candidate_atlas.core.config import Settings
from candidate_atlas.db.session import Database
from candidate_atlas.domain.candidates.repository import SqlCandidateStore, create_candidate_store
from candidate_atlas.domain.imports.importer import CandidateImporter
from candidate_atlas.domain.imports.orchestrator import IngestionOrchestrator
from candidate_atlas.domain.imports.schema_mapper import create_schema_mapper_factory
from candidate_atlas.domain.imports.status import IngestionStatusTracker, create_status_tracker_from_settings
from candidate_atlas.integrations.llm import create_chat_client, create_optional_chat_client
from candidate_atlas.integrations.spreadsheets import create_row_stream_reader

logger = logging.getLogger(__name__)


class IngestionContext:
    def __init__(self, settings: Settings, database: Optional[Database] = None):
        self.settings = settings
        self.reader = create_row_stream_reader()
        self.mapper_factory = create_schema_mapper_factory()
        self._database = database
        self._owns_database = database is None
        self._store: Optional[SqlCandidateStore] = None
        self._chat_client = None
        self._chat_client_ready = False

    @classmethod
    def from_settings(cls, settings: Settings, database: Optional[Database] = None) -> "IngestionContext":
        return cls(settings, database=database)

    @property
    def database(self) -> Database:
        if self._database is None:
            logger.info("Connecting to candidate database")
            self._database = Database.from_url(self.settings.database_url, echo=self.settings.debug)
        return self._database

    @property
    def store(self) -> SqlCandidateStore:
        if self._store is None:
            self._store = create_candidate_store(self.database)
        return self._store

    @property
    def chat_client(self):
        if not self._chat_client_ready:
            self._chat_client = create_optional_chat_client(self.settings)
            self._chat_client_ready = True
        return self._chat_client

    def require_chat_client(self):
        """Chat client regardless of the ai_header_mapping setting (map-headers command)."""
        if self.chat_client is not None:
            return self.chat_client
        return create_chat_client(self.settings)

    def create_tracker(self) -> Optional[IngestionStatusTracker]:
        database = self.database if self.settings.status_store == "database" else None
        return create_status_tracker_from_settings(self.settings, database=database)

    def create_importer(self) -> CandidateImporter:
        return CandidateImporter(
            reader=self.reader,
            mapper_factory=self.mapper_factory,
            store=self.store,
            default_country_code=self.settings.default_country_code,
            chat_client=self.chat_client,
            ai_mode=self.settings.ai_header_mapping,
        )

    def create_orchestrator(self) -> IngestionOrchestrator:
        return IngestionOrchestrator(
            importer=self.create_importer(),
            store=self.store,
            tracker=self.create_tracker(),
            resume=self.settings.resume,
            fail_fast=self.settings.fail_fast,
            max_retries=self.settings.max_retries,
            retry_base_ms=self.settings.retry_base_ms,
            retry_max_ms=self.settings.retry_max_ms,
        )

    def close(self) -> None:
        if self._database is not None and self._owns_database:
            self._database.close()
        self._database = None
        self._store = None

    def __enter__(self) -> "IngestionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

"""
Import use case for a single spreadsheet file.

Streams header and row events from the reader, maps each row through the
schema mapper built for its sheet, assembles candidates and writes them to the
store in batches. Memory use is bounded by the batch size (plus a handful of
sample rows while the AI assist is consulted).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from candidate_atlas.core.exceptions import InputError
from candidate_atlas.domain.candidates.assembler import assemble_candidate
from candidate_atlas.domain.candidates.models import Candidate, SourceRef
from candidate_atlas.domain.candidates.repository import CandidateStore
from candidate_atlas.domain.imports.header_mapping import MAX_SAMPLE_ROWS, map_headers_with_ai
from candidate_atlas.domain.imports.schema_mapper import HeuristicSchemaMapperFactory, SchemaMapper
from candidate_atlas.integrations.llm import ChatClient
from candidate_atlas.integrations.spreadsheets import HeaderEvent, RowEvent, RowStreamReader

logger = logging.getLogger(__name__)

AI_MODE_OFF = "off"
AI_MODE_AUTO = "auto"
AI_MODE_ALWAYS = "always"
AI_MODES = (AI_MODE_OFF, AI_MODE_AUTO, AI_MODE_ALWAYS)

DEFAULT_BATCH_SIZE = 1000


@dataclass
class ImportResult:
    """Counters for one imported file."""
    file_path: str
    processed_rows: int = 0
    persisted: int = 0
    dropped_rows: int = 0
    conflicts: int = 0
    batches: int = 0
    sheets: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "processed_rows": self.processed_rows,
            "persisted": self.persisted,
            "dropped_rows": self.dropped_rows,
            "conflicts": self.conflicts,
            "batches": self.batches,
            "sheets": list(self.sheets),
        }


@dataclass
class _SheetState:
    name: str
    header: List[str]
    mapper: SchemaMapper
    # Rows held back as samples until the AI mapping is resolved.
    samples: Optional[List[RowEvent]] = None


class CandidateImporter:
    """
    Imports candidates from one spreadsheet file.

    The optional chat client is only consulted when ai_mode is "always", or
    "auto" and the heuristic mapper found neither a name, email nor phone column.
    """

    def __init__(
        self,
        reader: RowStreamReader,
        mapper_factory: HeuristicSchemaMapperFactory,
        store: CandidateStore,
        default_country_code: Optional[str] = None,
        chat_client: Optional[ChatClient] = None,
        ai_mode: str = AI_MODE_OFF,
    ):
        if ai_mode not in AI_MODES:
            raise ValueError(f"ai_mode must be one of {', '.join(AI_MODES)}, got {ai_mode!r}")
        self.reader = reader
        self.mapper_factory = mapper_factory
        self.store = store
        self.default_country_code = default_country_code
        self.chat_client = chat_client
        self.ai_mode = ai_mode

    def run(
        self,
        file_path: str,
        sheet_name: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> ImportResult:
        """
        Import every data row of the file (or of one sheet).

        Args:
            file_path: Spreadsheet to import
            sheet_name: Restrict the import to this sheet
            batch_size: Candidates buffered before each upsert_many call

        Returns:
            ImportResult with processed, persisted and dropped row counts

        Raises:
            InputError: The file cannot be read or holds no header row
            PersistenceError: A batch could not be written
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        logger.info(f"Importing {file_path}" + (f" (sheet '{sheet_name}')" if sheet_name else ""))
        result = ImportResult(file_path=file_path)
        buffer: List[Candidate] = []
        state: Optional[_SheetState] = None

        with self.reader.open(file_path, sheet_name) as stream:
            for event in stream:
                if isinstance(event, HeaderEvent):
                    if state is not None:
                        self._resolve_samples(state, file_path, result, buffer, batch_size)
                    state = self._start_sheet(event)
                    result.sheets.append(event.sheet_name)
                    continue

                if state is None:
                    raise InputError(f"Row {event.row_number} of {file_path} arrived before a header row", file_path)

                result.processed_rows += 1
                if state.samples is not None:
                    state.samples.append(event)
                    if len(state.samples) >= MAX_SAMPLE_ROWS:
                        self._resolve_samples(state, file_path, result, buffer, batch_size)
                    continue

                self._handle_row(state, event, file_path, result, buffer, batch_size)

        if state is None:
            raise InputError(f"No header row found in {file_path}", file_path)

        self._resolve_samples(state, file_path, result, buffer, batch_size)
        self._flush(buffer, result)

        logger.info(
            f"Finished {file_path}: processed={result.processed_rows} persisted={result.persisted} "
            f"dropped={result.dropped_rows} conflicts={result.conflicts} batches={result.batches}"
        )
        return result

    def _wants_ai(self, mapper: SchemaMapper) -> bool:
        if self.chat_client is None or self.ai_mode == AI_MODE_OFF:
            return False
        if self.ai_mode == AI_MODE_ALWAYS:
            return True
        return not mapper.has_identity_fields

    def _start_sheet(self, event: HeaderEvent) -> _SheetState:
        mapper = self.mapper_factory.create_for_header(event.header)
        state = _SheetState(name=event.sheet_name, header=list(event.header), mapper=mapper)
        if self._wants_ai(mapper):
            state.samples = []
        elif not mapper.has_identity_fields:
            logger.warning(
                f"Sheet '{event.sheet_name}' has no recognizable name, email or phone column; "
                f"its rows will be dropped"
            )
        return state

    def _resolve_samples(
        self,
        state: _SheetState,
        file_path: str,
        result: ImportResult,
        buffer: List[Candidate],
        batch_size: int,
    ) -> None:
        """Consult the AI assist with the buffered samples, then process them."""
        if state.samples is None:
            return
        samples, state.samples = state.samples, None

        outcome = map_headers_with_ai(
            self.chat_client,
            state.header,
            sample_rows=[sample.record for sample in samples],
        )
        if outcome.ok and outcome.dictionary:
            state.mapper = state.mapper.with_overrides(outcome.dictionary)
            logger.info(f"Sheet '{state.name}' mapped with AI assist: {state.mapper.mapped_fields}")
        elif outcome.ok:
            logger.info(f"AI assist mapped no fields for sheet '{state.name}'; keeping heuristic mapping")
        else:
            logger.warning(
                f"AI header mapping failed for sheet '{state.name}' ({outcome.error.code}); "
                f"falling back to heuristic mapping"
            )

        for sample in samples:
            self._handle_row(state, sample, file_path, result, buffer, batch_size)

    def _handle_row(
        self,
        state: _SheetState,
        event: RowEvent,
        file_path: str,
        result: ImportResult,
        buffer: List[Candidate],
        batch_size: int,
    ) -> None:
        mapped = state.mapper.map_row(event.record)
        source = SourceRef(file_path=file_path, sheet_name=event.sheet_name, row_number=event.row_number)
        candidate = assemble_candidate(mapped, source, default_country_code=self.default_country_code)
        if candidate is None:
            result.dropped_rows += 1
            logger.debug(f"Dropping row {event.row_number} of '{event.sheet_name}': no email, phone or name")
            return

        buffer.append(candidate)
        if len(buffer) >= batch_size:
            self._flush(buffer, result)

    def _flush(self, buffer: List[Candidate], result: ImportResult) -> None:
        if not buffer:
            return
        bulk = self.store.upsert_many(list(buffer))
        buffer.clear()
        result.batches += 1
        result.persisted += bulk.persisted
        result.conflicts += bulk.conflicts
        logger.debug(f"Flushed batch {result.batches}: persisted={bulk.persisted} conflicts={bulk.conflicts}")

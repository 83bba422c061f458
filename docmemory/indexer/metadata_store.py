"""
Metadata Store

Reads the `<document>.metadata.json` sidecars of the organized folder tree
and holds the current set of DocumentRecords.

Reads run in worker threads; the record set itself is only mutated by the
synchronous put/discard/replace_all methods.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..common.config import METADATA_SUFFIX, MEMORY_DIR_NAME
from ..common.errors import MalformedRecord, StoreReadError
from ..common.schemas import DocumentRecord, generate_record_id
from ..common.similarity import best_match

logger = logging.getLogger("docmemory.indexer.metadata_store")


@dataclass
class FilenameMatch:
    """Result of a filename lookup"""
    record: DocumentRecord
    score: float
    fuzzy: bool = False


@dataclass
class StoreStatistics:
    """Aggregate counts over the record set"""
    total_documents: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_category: Dict[str, int] = field(default_factory=dict)
    template_count: int = 0
    recent_documents: List[DocumentRecord] = field(default_factory=list)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MetadataStore:
    """
    Accessor for the organized folder tree.

    Record ids are document paths relative to the organized root, so the
    sidecar `03_Finance_and_Investment/SAFE.pdf.metadata.json` yields the id
    `03_Finance_and_Investment/SAFE.pdf`.
    """

    def __init__(
        self,
        organized_root: str,
        metadata_suffix: str = METADATA_SUFFIX,
        memory_dir: str = MEMORY_DIR_NAME,
    ):
        self._root = Path(organized_root).expanduser()
        self._suffix = metadata_suffix
        self._memory_dir = memory_dir
        self._records: Dict[str, DocumentRecord] = {}

    @property
    def root(self) -> Path:
        return self._root

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    # ------------------------------------------------------------------
    # Reading sidecars
    # ------------------------------------------------------------------

    def record_id_for(self, sidecar_path: Path) -> str:
        """Record id of the document a sidecar describes"""
        posix = generate_record_id(Path(sidecar_path), self._root)
        if posix.endswith(self._suffix):
            posix = posix[: -len(self._suffix)]
        return posix

    def sidecar_path_for(self, record_id: str) -> Path:
        return self._root / f"{record_id}{self._suffix}"

    def _discover(self) -> List[Path]:
        """Sidecar paths in sorted order, skipping hidden and memory directories"""
        if not self._root.is_dir():
            raise StoreReadError(f"Organized root not found: {self._root}")

        def _raise(error: OSError) -> None:
            raise StoreReadError(f"Cannot read {error.filename}: {error}") from error

        found = []
        for dirpath, dirnames, filenames in os.walk(self._root, onerror=_raise):
            dirnames[:] = sorted(
                d for d in dirnames
                if not d.startswith(".") and d != self._memory_dir
            )
            for name in filenames:
                if name.endswith(self._suffix) and not name.startswith("."):
                    found.append(Path(dirpath) / name)
        return sorted(found, key=lambda p: p.relative_to(self._root).as_posix())

    def _read_sidecar(self, path: Path) -> DocumentRecord:
        record_id = self.record_id_for(path)
        try:
            raw = path.read_bytes()
            document = self._root / record_id
            mtime = (document if document.exists() else path).stat().st_mtime
        except OSError as e:
            raise StoreReadError(f"Cannot read {path}: {e}") from e

        try:
            data = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise MalformedRecord(f"not valid UTF-8: {e}", source=record_id) from e
        except json.JSONDecodeError as e:
            raise MalformedRecord(f"invalid JSON: {e}", source=record_id) from e

        updated_at = datetime.fromtimestamp(mtime, tz=timezone.utc)
        return DocumentRecord.from_metadata(data, record_id, updated_at=updated_at)

    def _read_all(self) -> List[DocumentRecord]:
        records = []
        skipped = 0
        for path in self._discover():
            try:
                records.append(self._read_sidecar(path))
            except MalformedRecord as e:
                skipped += 1
                logger.warning("Skipping malformed sidecar: %s", e)
        logger.info("Scanned %s: %d records, %d skipped", self._root, len(records), skipped)
        return records

    async def scan(self) -> List[DocumentRecord]:
        """
        Load every sidecar under the organized root, in discovery order.

        The current record set is not modified; callers apply the result
        with replace_all().

        Raises:
            StoreReadError: the tree or one of its files could not be read
        """
        return await asyncio.to_thread(self._read_all)

    async def load_sidecar(self, path: Path) -> DocumentRecord:
        """
        Read and parse a single sidecar.

        Raises:
            MalformedRecord: not UTF-8, invalid JSON or missing required fields
            StoreReadError: the file could not be read
        """
        return await asyncio.to_thread(self._read_sidecar, Path(path))

    # ------------------------------------------------------------------
    # Record set
    # ------------------------------------------------------------------

    def put(self, record: DocumentRecord) -> bool:
        """Insert or replace a record. Returns True if its content changed."""
        existing = self._records.get(record.id)
        self._records[record.id] = record
        if existing is None:
            return True
        return existing.model_dump(exclude={"updated_at"}) != record.model_dump(exclude={"updated_at"})

    def discard(self, record_id: str) -> Optional[DocumentRecord]:
        return self._records.pop(record_id, None)

    def get(self, record_id: str) -> Optional[DocumentRecord]:
        return self._records.get(record_id)

    def records(self) -> List[DocumentRecord]:
        """All records, in insertion (discovery) order"""
        return list(self._records.values())

    def replace_all(self, records: Iterable[DocumentRecord]) -> None:
        """Swap in a new record set in one step"""
        self._records = {r.id: r for r in records}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_filename(self, name: str, threshold: float = 0.6) -> Optional[FilenameMatch]:
        """
        Find a record by filename.

        Exact (case-insensitive) filename matches win; otherwise the most
        similar filename at or above threshold is returned. A name without
        an extension is compared with filename stems.
        """
        wanted = name.strip().lower()
        if not wanted:
            return None

        for record in self._records.values():
            if record.filename.lower() == wanted:
                return FilenameMatch(record=record, score=1.0)

        if Path(wanted).suffix:
            record, score = best_match(wanted, self._records.values(), key=lambda r: r.filename)
        else:
            record, score = best_match(wanted, self._records.values(), key=lambda r: Path(r.filename).stem)
        if record is None or score < threshold:
            return None
        return FilenameMatch(record=record, score=round(score, 4), fuzzy=True)

    def statistics(self, recent: int = 5) -> StoreStatistics:
        """Counts by status and category, template count, most recent documents"""
        stats = StoreStatistics(total_documents=len(self._records))
        for record in self._records.values():
            status = record.status.value
            stats.by_status[status] = stats.by_status.get(status, 0) + 1
            stats.by_category[record.category] = stats.by_category.get(record.category, 0) + 1
            if record.is_template:
                stats.template_count += 1

        epoch = datetime.min.replace(tzinfo=timezone.utc)

        def _recency(record: DocumentRecord) -> datetime:
            return (
                _parse_date(record.fully_executed_date)
                or _parse_date(record.effective_date)
                or epoch
            )

        ordered = sorted(self._records.values(), key=lambda r: r.id)
        stats.recent_documents = sorted(ordered, key=_recency, reverse=True)[:recent]
        return stats

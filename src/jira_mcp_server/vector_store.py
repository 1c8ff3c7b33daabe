"""
Vector Store for Semantic Project Search

Keeps one or more embedded search texts per project and answers
nearest-neighbour queries by cosine similarity. Backends:
- File store: in-memory records mirrored to a flat text file
- Memory store: same semantics without persistence

File format, one record per line, no header:

    <projectKey>|<projectName>|<searchText>|<JSON array of floats>
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import numpy as np
from pydantic import BaseModel, Field

from .errors import CorruptPersistentStoreError

logger = logging.getLogger(__name__)

FIELD_DELIMITER = "|"


class VectorStoreType(Enum):
    """Available vector store backends."""
    FILE = "file"
    MEMORY = "memory"


@dataclass
class EmbeddingRecord:
    """One embedded search text of a project."""
    key: str
    name: str
    search_text: str
    vector: Optional[np.ndarray] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = datetime.now()
        if self.vector is not None:
            self.vector = np.asarray(self.vector, dtype=np.float32)


@dataclass
class SearchResult:
    """A ranked project match; score is in [0, 1], higher is better."""
    key: str
    name: str
    score: float
    source: str = "semantic"

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "name": self.name}


class VectorStoreConfig(BaseModel):
    """Configuration for vector store."""
    store_type: VectorStoreType = VectorStoreType.FILE
    persist_path: Optional[str] = Field("./data/vectors.txt", description="Path of the vector file")
    embedding_dimension: Optional[int] = Field(None, description="Expected dimension of embeddings")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0 for zero or mismatched vectors."""
    if a.shape != b.shape:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def format_record(record: EmbeddingRecord) -> str:
    """Serialize a record to one line of the vector file."""
    vector_json = json.dumps([float(x) for x in record.vector])
    return FIELD_DELIMITER.join([record.key, record.name, record.search_text, vector_json])


def parse_record(line: str) -> EmbeddingRecord:
    """
    Parse one line of the vector file.

    Raises:
        ValueError: The line does not hold exactly four non-empty fields
            and a JSON array of numbers
    """
    parts = line.split(FIELD_DELIMITER)
    if len(parts) != 4:
        raise ValueError(f"expected 4 fields, got {len(parts)}")

    key, name, search_text, vector_json = parts
    if not key or not name or not search_text or not vector_json:
        raise ValueError("empty field")

    values = json.loads(vector_json)
    if not isinstance(values, list) or not values:
        raise ValueError("vector is not a non-empty array")

    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ValueError(f"vector is not numeric: {e}") from e
    if vector.ndim != 1:
        raise ValueError("vector is not flat")

    return EmbeddingRecord(key=key, name=name, search_text=search_text, vector=vector)


class BaseVectorStore(ABC):
    """Abstract base class for vector stores."""

    def __init__(self, config: VectorStoreConfig):
        self.config = config
        self.is_initialized = False

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the vector store."""
        pass

    @abstractmethod
    async def upsert(self, records: List[EmbeddingRecord]) -> None:
        """Insert or replace records."""
        pass

    @abstractmethod
    async def search(
        self,
        query_vector: np.ndarray,
        limit: int,
        max_distance: float
    ) -> List[SearchResult]:
        """Rank projects by their closest record."""
        pass

    @abstractmethod
    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        """Delete every record of the given projects."""
        pass

    @abstractmethod
    async def get_all_keys(self) -> List[str]:
        """Keys of all projects in the store."""
        pass

    @abstractmethod
    async def get_project_names(self) -> Dict[str, str]:
        """Project key to name mapping for all stored projects."""
        pass

    @abstractmethod
    async def get_search_texts(self) -> Dict[str, Set[str]]:
        """Project key to the search texts embedded for it."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove everything."""
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the vector store."""
        pass

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Dimension of stored vectors, None while empty."""
        pass


class MemoryVectorStore(BaseVectorStore):
    """In-memory vector store; records grouped by project key."""

    def __init__(self, config: VectorStoreConfig):
        super().__init__(config)
        self.records: Dict[str, List[EmbeddingRecord]] = {}
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> Optional[int]:
        for project_records in self.records.values():
            for record in project_records:
                return int(record.vector.shape[0])
        return None

    async def initialize(self) -> None:
        """Initialize memory store."""
        self.is_initialized = True
        logger.info("Memory vector store initialized")

    async def _persist(self) -> None:
        """Hook for persistent subclasses; called with the lock held."""
        pass

    async def upsert(self, records: List[EmbeddingRecord]) -> None:
        """
        Insert or replace records.

        A record replaces the project's existing record with the same search
        text. Records without a vector are skipped.

        Raises:
            ValueError: A vector's dimension differs from the store's
        """
        records = [r for r in records if r.vector is not None]
        if not records:
            return

        async with self._lock:
            dimension = self.dimension
            for record in records:
                size = int(record.vector.shape[0])
                if dimension is None:
                    dimension = size
                elif size != dimension:
                    raise ValueError(
                        f"Vector dimension {size} does not match store dimension {dimension}"
                    )

            for record in records:
                project_records = self.records.setdefault(record.key, [])
                for i, existing in enumerate(project_records):
                    if existing.search_text == record.search_text:
                        project_records[i] = record
                        break
                else:
                    project_records.append(record)

            await self._persist()

        logger.debug(f"Upserted {len(records)} records")

    async def search(
        self,
        query_vector: np.ndarray,
        limit: int,
        max_distance: float
    ) -> List[SearchResult]:
        """
        Search using cosine similarity.

        Args:
            query_vector: Embedded query
            limit: Maximum number of projects to return
            max_distance: Maximum cosine distance (1 - similarity) of a match

        Returns:
            Best match per project, sorted by descending score
        """
        if not self.records or limit <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        results = []

        for project_records in self.records.values():
            best_distance = None
            best_record = None
            for record in project_records:
                distance = 1.0 - cosine_similarity(query, record.vector)
                if best_distance is None or distance < best_distance:
                    best_distance = distance
                    best_record = record

            if best_record is not None and best_distance <= max_distance:
                results.append(SearchResult(
                    key=best_record.key,
                    name=best_record.name,
                    score=1.0 - min(best_distance, 2.0) / 2.0,
                ))

        results.sort(key=lambda r: (-r.score, r.key))

        logger.debug(f"Vector search returned {len(results)} results")
        return results[:limit]

    async def delete_by_keys(self, keys: Iterable[str]) -> None:
        """Delete projects; persists only if something was removed."""
        async with self._lock:
            changed = False
            for key in keys:
                if self.records.pop(key, None) is not None:
                    changed = True

            if changed:
                await self._persist()

    async def get_all_keys(self) -> List[str]:
        return list(self.records.keys())

    async def get_project_names(self) -> Dict[str, str]:
        return {
            key: project_records[0].name
            for key, project_records in self.records.items()
            if project_records
        }

    async def get_search_texts(self) -> Dict[str, Set[str]]:
        return {
            key: {record.search_text for record in project_records}
            for key, project_records in self.records.items()
        }

    async def clear(self) -> None:
        """Remove all records."""
        async with self._lock:
            self.records.clear()
        logger.info("Vector store cleared")

    async def get_stats(self) -> Dict[str, Any]:
        """Get memory store statistics."""
        return {
            "store_type": self.config.store_type.value,
            "project_count": len(self.records),
            "record_count": sum(len(r) for r in self.records.values()),
            "embedding_dimension": self.dimension
        }

    async def close(self) -> None:
        """Close memory store."""
        self.records.clear()
        self.is_initialized = False
        logger.info("Memory vector store closed")


class FileVectorStore(MemoryVectorStore):
    """
    Vector store mirrored to a flat file.

    The file is rewritten in full on every change: written to a temporary
    path and moved into place, so readers never see a partial file.
    """

    def __init__(self, config: VectorStoreConfig):
        super().__init__(config)
        if not config.persist_path:
            raise ValueError("persist_path is required for the file vector store")
        self.path = config.persist_path

    async def initialize(self) -> None:
        """Load records from disk; a corrupt file is discarded."""
        loop = asyncio.get_running_loop()
        try:
            records = await loop.run_in_executor(None, self._read_file)
        except CorruptPersistentStoreError as e:
            logger.warning(f"Vector store file is corrupt, starting empty: {e.message}")
            await loop.run_in_executor(None, self._remove_file)
            records = []

        self.records = {}
        for record in records:
            self.records.setdefault(record.key, []).append(record)

        expected = self.config.embedding_dimension
        if expected and self.dimension not in (None, expected):
            logger.warning(
                f"Stored vectors have dimension {self.dimension} but the embedding model "
                f"produces {expected}; discarding {self.path}"
            )
            self.records = {}
            await loop.run_in_executor(None, self._remove_file)

        self.is_initialized = True
        logger.info(f"File vector store initialized with {len(self.records)} projects from {self.path}")

    def _read_file(self) -> List[EmbeddingRecord]:
        if not os.path.exists(self.path):
            logger.debug("Vector store file not found, starting fresh")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = [line.rstrip("\r\n") for line in f]
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptPersistentStoreError(f"cannot read {self.path}: {e}", self.path) from e

        lines = [line for line in lines if line.strip()]
        records: List[EmbeddingRecord] = []
        dimension = None
        for number, line in enumerate(lines, start=1):
            try:
                record = parse_record(line)
            except ValueError as e:
                logger.debug(f"Skipping malformed line {number} in {self.path}: {e}")
                continue

            size = int(record.vector.shape[0])
            if dimension is None:
                dimension = size
            elif size != dimension:
                logger.debug(f"Skipping line {number}: dimension {size} != {dimension}")
                continue
            records.append(record)

        if lines and not records:
            raise CorruptPersistentStoreError(
                f"none of {len(lines)} lines in {self.path} could be parsed", self.path
            )

        skipped = len(lines) - len(records)
        if skipped:
            logger.warning(f"Skipped {skipped} malformed lines in {self.path}")
        return records

    def _write_file(self, lines: List[str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
        os.replace(tmp_path, self.path)

    def _remove_file(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    async def _persist(self) -> None:
        lines = [
            format_record(record)
            for project_records in self.records.values()
            for record in project_records
        ]
        await asyncio.get_running_loop().run_in_executor(None, self._write_file, lines)
        logger.debug(f"Saved {len(lines)} vectors to {self.path}")

    async def clear(self) -> None:
        """Remove all records and the file."""
        async with self._lock:
            self.records.clear()
            await asyncio.get_running_loop().run_in_executor(None, self._remove_file)
        logger.info("Vector store cleared")

    async def close(self) -> None:
        """Flush to disk and drop the in-memory copy."""
        async with self._lock:
            if self.records:
                await self._persist()
            self.records.clear()
        self.is_initialized = False
        logger.info("File vector store closed")


def create_vector_store(
    store_type: Union[str, VectorStoreType] = "file",
    persist_path: Optional[str] = "./data/vectors.txt",
    embedding_dimension: Optional[int] = None
) -> BaseVectorStore:
    """
    Create a vector store with simple configuration.

    Args:
        store_type: Type of vector store to create
        persist_path: Vector file location (file store only)
        embedding_dimension: Expected dimension of embeddings

    Returns:
        Configured vector store instance
    """
    if isinstance(store_type, str):
        store_type = VectorStoreType(store_type)

    config = VectorStoreConfig(
        store_type=store_type,
        persist_path=persist_path,
        embedding_dimension=embedding_dimension
    )

    if config.store_type == VectorStoreType.FILE:
        return FileVectorStore(config)
    return MemoryVectorStore(config)

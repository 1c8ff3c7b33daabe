"""
Project Search Orchestrator

Resolves free-text, typo-laden or transliterated queries to Jira projects.
Decision order for a query:
1. "*" returns the whole catalog sorted by key
2. semantic search (embeddings + vector store) when configured and healthy
3. lexical search: exact variant match, then fuzzy phrase similarity
4. with no catalog at all, substring search over projects restored from
   the vector store

The service also owns the throttled rebuild of the vector index.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .embeddings import EmbeddingClient, fill_embeddings
from .errors import UpstreamUnavailableError
from .index_scheduler import RefreshScheduler
from .projects_cache import CatalogEntry, CatalogSnapshot, Project, ProjectsCache
from .similarity import phrase_similarity
from .transliterate import project_search_texts
from .vector_store import BaseVectorStore, EmbeddingRecord, SearchResult

logger = logging.getLogger(__name__)

WILDCARD = "*"
DEFAULT_LIMIT = 50
DEFAULT_MIN_SIMILARITY = 0.33
DEFAULT_MAX_VECTOR_DISTANCE = 0.7

KEY_SUBSTRING_SCORE = 0.9
NAME_SUBSTRING_SCORE = 0.8


def list_all(projects: Iterable[Project], limit: int) -> List[SearchResult]:
    """Unscored listing of projects sorted by key."""
    ordered = sorted(projects, key=lambda p: p.key)
    return [SearchResult(key=p.key, name=p.name, score=0.0, source="catalog") for p in ordered[:limit]]


def lexical_search(
    entries: Iterable[CatalogEntry],
    query: str,
    limit: int,
    min_similarity: float = DEFAULT_MIN_SIMILARITY
) -> List[SearchResult]:
    """
    Match a query against the lexical variants of each project.

    Exact (case-insensitive) variant hits are returned alone with score 1.0.
    Otherwise each project scores the best phrase similarity over its
    variants; projects scoring above ``min_similarity`` are ranked.
    """
    entries = list(entries)
    normalized = query.strip().lower()

    exact = [
        SearchResult(key=e.project.key, name=e.project.name, score=1.0, source="exact")
        for e in entries
        if any(variant.lower() == normalized for variant in e.variants)
    ]
    if exact:
        return exact[:limit]

    results = []
    for entry in entries:
        score = max(
            (phrase_similarity(normalized, variant.lower()) for variant in entry.variants),
            default=0.0,
        )
        if score > min_similarity:
            results.append(SearchResult(
                key=entry.project.key,
                name=entry.project.name,
                score=score,
                source="lexical",
            ))

    results.sort(key=lambda r: (-r.score, r.key))
    return results[:limit]


def substring_search(projects: Iterable[Project], query: str, limit: int) -> List[SearchResult]:
    """Case-insensitive substring match on key (preferred) or name."""
    normalized = query.strip().lower()
    results = []
    for project in projects:
        if normalized in project.key.lower():
            score = KEY_SUBSTRING_SCORE
        elif normalized in project.name.lower():
            score = NAME_SUBSTRING_SCORE
        else:
            continue
        results.append(SearchResult(key=project.key, name=project.name, score=score, source="substring"))

    results.sort(key=lambda r: (-r.score, r.key))
    return results[:limit]


class ProjectSearchService:
    """
    Project resolution over the catalog cache, with an optional semantic layer.

    Built once per process and shared by the tool handlers.
    """

    def __init__(
        self,
        projects_cache: ProjectsCache,
        scheduler: RefreshScheduler,
        vector_store: Optional[BaseVectorStore] = None,
        embedder: Optional[EmbeddingClient] = None,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        max_vector_distance: float = DEFAULT_MAX_VECTOR_DISTANCE,
        search_text_builder: Callable[[str, str], Tuple[str, ...]] = project_search_texts
    ):
        self.projects_cache = projects_cache
        self.scheduler = scheduler
        self.vector_store = vector_store
        self.embedder = embedder
        self.min_similarity = min_similarity
        self.max_vector_distance = max_vector_distance
        self._search_text_builder = search_text_builder

        self.semantic_configured = vector_store is not None and embedder is not None
        self.semantic_disabled_reason: Optional[str] = None
        self._semantic_ready = False
        self._refresh_lock = asyncio.Lock()

    @property
    def semantic_available(self) -> bool:
        if not (self.semantic_configured and self._semantic_ready):
            return False
        if not self.embedder.is_available:
            self._disable_semantic(f"embedding provider unavailable ({self.embedder.unavailable_reason})")
            return False
        return True

    def _disable_semantic(self, reason: str) -> None:
        self._semantic_ready = False
        if self.semantic_disabled_reason is None:
            self.semantic_disabled_reason = reason
            logger.warning(f"Semantic project search disabled, using lexical search: {reason}")

    async def initialize(self) -> None:
        """Load the vector store when the semantic layer is configured."""
        if not self.semantic_configured:
            logger.info("Semantic search not configured; project search is lexical only")
            return

        try:
            await self.vector_store.initialize()
        except Exception as e:
            self._disable_semantic(f"vector store failed to initialize: {e}")
            return

        self._semantic_ready = True
        logger.info("Semantic project search initialized")

    async def refresh_index(self, force: bool = False) -> bool:
        """
        Rebuild the search index if due.

        Args:
            force: Refetch the catalog and rebuild even if the last rebuild
                is recent

        Returns:
            True if a rebuild completed

        Raises:
            UpstreamUnavailableError: The catalog could not be fetched
        """
        async with self._refresh_lock:
            if not force and not self.scheduler.should_update_index():
                logger.debug(
                    f"Skipping index update (next update in {self.scheduler.get_time_to_next_update()}s)"
                )
                return False

            if force:
                self.projects_cache.clear()
            snapshot = await self.projects_cache.get_projects()

            if self.semantic_available:
                try:
                    complete = await self._sync_vector_index(snapshot)
                except (OSError, ValueError) as e:
                    logger.error(f"Failed to update vector index: {e}")
                    return False
                if not complete:
                    logger.warning("Vector index rebuild incomplete; retrying on the next refresh")
                    return False

            self.scheduler.mark_updated()
            logger.info(
                f"Project index updated: {len(snapshot)} projects, "
                f"next update in {self.scheduler.get_time_to_next_update()}s"
            )
            return True

    async def _sync_vector_index(self, snapshot: CatalogSnapshot) -> bool:
        """Bring the vector index in line with the catalog; False if some texts were not embedded."""
        stored_names = await self.vector_store.get_project_names()
        stored_texts = await self.vector_store.get_search_texts()
        current = snapshot.projects

        vanished = [key for key in stored_names if key not in current]
        if vanished:
            logger.info(f"Deleting {len(vanished)} obsolete projects from vector index")
            await self.vector_store.delete_by_keys(vanished)

        renamed = [
            key for key, project in current.items()
            if key in stored_names and stored_names[key] != project.name
        ]
        if renamed:
            await self.vector_store.delete_by_keys(renamed)
            for key in renamed:
                stored_texts.pop(key, None)

        # texts left out by an earlier failed rebuild are embedded again
        records = [
            EmbeddingRecord(key=project.key, name=project.name, search_text=text)
            for project in current.values()
            for text in self._search_text_builder(project.key, project.name)
            if text not in stored_texts.get(project.key, ())
        ]
        if not records:
            logger.info(f"Vector index is up to date ({len(current)} projects)")
            return True

        pending = len({record.key for record in records})
        logger.info(f"Updating vector index: {pending} projects, {len(records)} search texts")

        embedded = []
        async for record, vector in fill_embeddings(
            records,
            self.embedder.embed_batch,
            self.embedder.config.batch_token_limit,
            text_of=lambda r: r.search_text,
        ):
            if vector is not None:
                record.vector = vector
                embedded.append(record)

        if embedded:
            await self.vector_store.upsert(embedded)

        missing = len(records) - len(embedded)
        if missing:
            logger.warning(f"{missing} of {len(records)} search texts could not be embedded")
            return False
        return True

    async def _load_catalog(self) -> CatalogSnapshot:
        try:
            if self.scheduler.should_update_index():
                await self.refresh_index()
            return await self.projects_cache.get_projects()
        except UpstreamUnavailableError as e:
            stale = self.projects_cache.peek()
            if stale is None:
                raise
            logger.warning(f"Serving stale project catalog: {e.message}")
            return stale

    async def _restored_projects(self) -> List[Project]:
        if self.vector_store is None or not self.vector_store.is_initialized:
            return []
        names = await self.vector_store.get_project_names()
        return [Project(key=key, name=name) for key, name in names.items()]

    async def _semantic_search(self, snapshot: CatalogSnapshot, query: str, limit: int) -> Optional[List[SearchResult]]:
        vector = await self.embedder.embed_one(query)
        if vector is None:
            logger.debug("Query embedding failed, falling back to lexical search")
            return None

        store_size = len(await self.vector_store.get_all_keys())
        ranked = await self.vector_store.search(vector, max(limit, store_size), self.max_vector_distance)
        # the index may still hold projects removed since the last rebuild
        return [r for r in ranked if r.key in snapshot.projects][:limit]

    async def search(self, query: str, limit: int = DEFAULT_LIMIT) -> List[SearchResult]:
        """
        Resolve a query to ranked projects.

        Args:
            query: Free text, a project key, or "*" for all projects
            limit: Maximum number of results

        Returns:
            Ranked results, possibly empty

        Raises:
            UpstreamUnavailableError: No catalog data is available at all
        """
        q = (query or "").strip()
        if not q:
            return []

        try:
            snapshot = await self._load_catalog()
        except UpstreamUnavailableError:
            projects = await self._restored_projects()
            if not projects:
                raise
            logger.warning(
                f"Project catalog unavailable; searching {len(projects)} projects restored from vector store"
            )
            if q == WILDCARD:
                return list_all(projects, limit)
            return substring_search(projects, q, limit)

        if q == WILDCARD:
            return list_all(snapshot.projects.values(), limit)

        if self.semantic_available:
            logger.debug(f"Using semantic search for query: {q}")
            results = await self._semantic_search(snapshot, q, limit)
            if results is not None:
                return results

        logger.debug(f"Using lexical search for query: {q}")
        return lexical_search(snapshot.entries.values(), q, limit, self.min_similarity)

    async def find(self, query: str, limit: int = DEFAULT_LIMIT) -> Dict[str, Any]:
        """Search and shape the result for tool callers; scores are dropped."""
        results = await self.search(query, limit)
        matches = [r.to_dict() for r in results]

        if (query or "").strip() == WILDCARD:
            message = f"Showing {len(matches)} projects"
        elif matches:
            message = f'Found {len(matches)} project(s) matching "{query}"'
        else:
            message = f'No projects found matching "{query}"'

        return {"message": message, "matches": matches}

    async def get_status(self) -> Dict[str, Any]:
        """Snapshot of catalog, index and semantic layer state."""
        snapshot = self.projects_cache.peek()
        status = {
            "catalog": {
                "projects": len(snapshot) if snapshot else 0,
                "fresh": self.projects_cache.is_fresh(),
                "fetch_count": self.projects_cache.fetch_count,
            },
            "index": {
                "refresh_interval": self.scheduler.interval,
                "time_to_next_update": self.scheduler.get_time_to_next_update(),
            },
            "semantic_search": {
                "configured": self.semantic_configured,
                "available": self.semantic_available,
                "disabled_reason": self.semantic_disabled_reason,
            },
        }

        if self.vector_store is not None and self.vector_store.is_initialized:
            status["vector_store"] = await self.vector_store.get_stats()
        if self.embedder is not None:
            status["semantic_search"]["model"] = self.embedder.config.model
            status["semantic_search"]["tokens_used"] = self.embedder.total_tokens

        return status

    async def close(self) -> None:
        if self.vector_store is not None and self.vector_store.is_initialized:
            await self.vector_store.close()
        if self.embedder is not None:
            await self.embedder.close()

"""
Project Catalog Cache

TTL-bounded cache of the upstream Jira project list with a single-flight
refresh: concurrent callers arriving while a fetch is running await that
same fetch instead of issuing their own upstream call.

Each cached project carries its lexical search variants, regenerated on
every successful refresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .errors import UpstreamUnavailableError
from .transliterate import project_variants

logger = logging.getLogger(__name__)

DEFAULT_PROJECTS_TTL = 60 * 60  # 1 hour

FetchProjects = Callable[[], Awaitable[List["Project"]]]
VariantBuilder = Callable[[str, str, Optional[str]], Tuple[str, ...]]


@dataclass(frozen=True)
class Project:
    """A Jira project as seen by the search subsystem."""
    key: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class CatalogEntry:
    """A project together with its lexical search variants."""
    project: Project
    variants: Tuple[str, ...]


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable, fully populated view of the catalog."""
    entries: Dict[str, CatalogEntry]
    expires_at: float
    fetched_at: float
    projects: Dict[str, Project] = field(init=False)

    def __post_init__(self):
        object.__setattr__(
            self, "projects", {key: entry.project for key, entry in self.entries.items()}
        )

    def __len__(self) -> int:
        return len(self.entries)

    def sorted_projects(self) -> List[Project]:
        return sorted(self.projects.values(), key=lambda p: p.key)


def build_snapshot(
    projects: List[Project],
    ttl: float,
    now: float,
    variant_builder: VariantBuilder = project_variants
) -> CatalogSnapshot:
    """
    Build a catalog snapshot from a freshly fetched project list.

    Args:
        projects: Upstream projects; later duplicates of a key win
        ttl: Time to live in seconds
        now: Current clock reading
        variant_builder: Produces the search variants of a project

    Returns:
        Populated CatalogSnapshot
    """
    entries: Dict[str, CatalogEntry] = {}
    for project in projects:
        entries[project.key] = CatalogEntry(
            project=project,
            variants=variant_builder(project.key, project.name, project.description),
        )
    return CatalogSnapshot(entries=entries, expires_at=now + ttl, fetched_at=now)


def _consume_result(task: asyncio.Task) -> None:
    # errors reach the awaiting callers; this only silences the
    # "exception was never retrieved" warning when every caller went away
    if not task.cancelled():
        task.exception()


class ProjectsCache:
    """
    Single-flight, TTL-bounded cache of the project catalog.

    A failed refresh never clears the previous snapshot; callers waiting on
    that refresh get the error and the next call retries.
    """

    def __init__(
        self,
        fetch_projects: FetchProjects,
        variant_builder: VariantBuilder = project_variants,
        ttl: float = DEFAULT_PROJECTS_TTL,
        fetch_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._fetch_projects = fetch_projects
        self._variant_builder = variant_builder
        self.ttl = ttl
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self._snapshot: Optional[CatalogSnapshot] = None
        self._inflight: Optional[asyncio.Task] = None
        self._invalidated = False
        self._generation = 0
        self.fetch_count = 0

    def peek(self) -> Optional[CatalogSnapshot]:
        """Current snapshot, possibly expired, or None if nothing was ever fetched."""
        return self._snapshot

    def is_fresh(self) -> bool:
        if self._snapshot is None or self._invalidated:
            return False
        return self._clock() < self._snapshot.expires_at

    async def get_projects(self) -> CatalogSnapshot:
        """
        Return the catalog, refreshing it when expired.

        Raises:
            UpstreamUnavailableError: The refresh this call waited on failed
        """
        if self.is_fresh():
            return self._snapshot

        # No await between the check and the assignment, so only one task
        # can ever be created per refresh.
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh(self._generation))
            self._inflight.add_done_callback(_consume_result)
        inflight = self._inflight

        # shield: a cancelled caller must not cancel the fetch others wait on
        return await asyncio.shield(inflight)

    async def _refresh(self, generation: int) -> CatalogSnapshot:
        try:
            self.fetch_count += 1
            logger.debug("Fetching project catalog from upstream")
            try:
                if self.fetch_timeout:
                    projects = await asyncio.wait_for(self._fetch_projects(), self.fetch_timeout)
                else:
                    projects = await self._fetch_projects()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Project catalog fetch failed: {e}")
                raise UpstreamUnavailableError(
                    f"Failed to fetch project catalog: {e}", original_error=e
                ) from e

            snapshot = build_snapshot(
                projects, self.ttl, self._clock(), self._variant_builder
            )
            if generation == self._generation:
                self._snapshot = snapshot
                self._invalidated = False
                logger.info(f"Project catalog refreshed: {len(snapshot)} projects")
            else:
                logger.debug("Catalog was cleared during fetch; result not cached")
            return snapshot
        finally:
            if generation == self._generation:
                self._inflight = None

    def clear(self) -> None:
        """
        Force the next call to refetch regardless of TTL.

        The old snapshot stays available through :meth:`peek` until a refetch
        succeeds.
        """
        self._generation += 1
        self._invalidated = True
        self._inflight = None
        logger.debug("Projects cache cleared")

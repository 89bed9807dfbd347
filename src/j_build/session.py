"""The resolution session: everything that lives for one top-level invocation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from typing import TypeVar

from j_build.config import BuildConfig
from j_build.models import Coordinate
from j_build.project import NodeArena, ProjectNode
from j_build.scanner import find_project_descriptors
from j_build.versions import compare_version


logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Coalesce concurrent calls per key.

    The first caller for a key runs the function; callers arriving while it runs wait
    for its result (or exception) instead of running it again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, Future] = {}

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._calls.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._calls[key] = future
        if not owner:
            return future.result()
        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                del self._calls[key]


class ResolutionSession:
    """Per-invocation state shared by the resolver, the staleness engine and the builder.

    Holds the arena of nodes, the coordinate-key memo (a cached `None` means "known to be
    missing"), the workspace index and the set of artifacts whose repository metadata was
    already refreshed.
    """

    def __init__(self, config: BuildConfig | None = None, fetcher=None) -> None:
        self.config = config or BuildConfig()
        self.arena = NodeArena(self.config.property_overrides)
        self.flights = SingleFlight()
        self.fetcher = fetcher
        self._memo: dict[str, ProjectNode | None] = {}
        self._memo_lock = threading.Lock()
        self._sources: dict[str, ProjectNode] = {}
        self._refreshed: set[str] = set()
        self._refreshed_lock = threading.Lock()
        self._workspace_scanned = False
        self._workspace_lock = threading.Lock()

    # -- memo ----------------------------------------------------------------

    def cached(self, key: str) -> tuple[bool, ProjectNode | None]:
        with self._memo_lock:
            if key in self._memo:
                return True, self._memo[key]
            return False, None

    def remember(self, key: str, node: ProjectNode | None) -> ProjectNode | None:
        with self._memo_lock:
            self._memo[key] = node
        return node

    def forget(self, key: str) -> None:
        with self._memo_lock:
            self._memo.pop(key, None)

    def register(self, node: ProjectNode) -> ProjectNode:
        """Memoize a parsed node under its coordinate key.

        Source projects are also indexed by artifact, newest version first, for
        `source_project`.
        """
        logger.debug("Registering %s", node.key())
        if node.build_from_source:
            artifact = node.coordinate.artifact_key()
            with self._memo_lock:
                current = self._sources.get(artifact)
                if current is None or compare_version(current.version, node.version) < 0:
                    self._sources[artifact] = node
        return self.remember(node.key(), node)

    def source_project(self, coordinate: Coordinate) -> ProjectNode | None:
        """Return the source project of the same artifact at the requested version or newer."""
        if coordinate.version is None or coordinate.is_range():
            return None
        with self._memo_lock:
            node = self._sources.get(coordinate.artifact_key())
        if node is None or compare_version(coordinate.version, node.version) > 0:
            return None
        return node

    # -- metadata refresh ----------------------------------------------------

    def claim_refresh(self, coordinate: Coordinate) -> bool:
        """Return True the first time an artifact's metadata refresh is requested."""
        key = f"{coordinate.ga()}:{coordinate.version}"
        with self._refreshed_lock:
            if key in self._refreshed:
                return False
            self._refreshed.add(key)
            return True

    # -- workspace -------------------------------------------------------------

    def scan_workspace(self) -> None:
        """Parse every top-level project under the configured workspace roots, once."""
        with self._workspace_lock:
            if self._workspace_scanned:
                return
            self._workspace_scanned = True
            from j_build.descriptor import load_project

            for root in self.config.workspace_roots:
                for pom in find_project_descriptors(Path(root)):
                    logger.debug("Parsing workspace project %s", pom)
                    load_project(pom, self)

    # -- repositories --------------------------------------------------------

    def repository_urls(self, node: ProjectNode | None = None) -> list[str]:
        """Configured repositories first, then the ones declared in `node`'s tree."""
        urls = list(self.config.repositories)
        if node is not None:
            urls.extend(u for u in node.all_repositories() if u not in urls)
        return urls

    def fake_node(self, path: Path, coordinate: Coordinate) -> ProjectNode:
        """A node standing for a jar referenced by `systemPath`."""
        key = f"system:{path}"

        def _create() -> ProjectNode:
            found, node = self.cached(key)
            if found and node is not None:
                return node
            node = self.arena.create(
                coordinate,
                path.parent,
                output_directory=path,
                artifact_path=path,
            )
            return self.remember(key, node)

        return self.flights.do(key, _create)


def descriptor_key(path: Path) -> str:
    """Memo key of a parsed descriptor file, so each pom.xml is parsed once."""
    return f"descriptor:{path.resolve()}"

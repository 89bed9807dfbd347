"""Transitive dependency resolution.

A single deterministic depth-first walk: the first node found for an
(artifactId, groupId, classifier) wins, exclusions accumulate while descending, and
every node enters the result before its own dependencies are visited, which is what
stops the walk on cycles.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterator
from pathlib import Path

from j_build.descriptor import load_repository_pom
from j_build.exceptions import DownloadError, MissingDependencyError, ResolutionError
from j_build.models import Coordinate
from j_build.project import ProjectNode, node_sort_key
from j_build.repository import LocalRepository
from j_build.session import ResolutionSession


logger = logging.getLogger(__name__)

# Deeper than any sane project graph; hitting it means misconfiguration.
MAX_GRAPH_DEPTH = 256

# Scopes left out whenever the graph is walked for building.
BUILD_EXCLUDED_SCOPES = ("test",)


def carry_exclusions(node: ProjectNode, dependency: Coordinate, exclusions: Collection[str]) -> frozenset[str]:
    """Exclusions in force below `dependency` when `node` reached it with `exclusions`."""
    return frozenset(exclusions) | dependency.exclusions | node.managed_exclusions(
        dependency.group_id, dependency.artifact_id
    )


class DependencyResolver:
    """Resolves ProjectNodes to their transitive dependency sets within one session."""

    def __init__(self, session: ResolutionSession) -> None:
        self.session = session
        self.repository = LocalRepository(session)

    def resolve(
        self,
        node: ProjectNode,
        exclude_optionals: bool = False,
        auto_download: bool | None = None,
        exclude_scopes: Collection[str] = (),
        tolerate_missing: bool | None = None,
    ) -> list[ProjectNode]:
        """Return the transitive dependencies of `node`, sorted by coordinate.

        Args:
            node: The project whose dependencies to resolve.
            exclude_optionals: Skip dependencies flagged optional.
            auto_download: Fetch missing artifacts; defaults to the session config.
            exclude_scopes: Scope names to skip (an unset scope counts as `compile`).
            tolerate_missing: Log and skip required dependencies that cannot be found
                instead of raising; defaults to the session config.

        Raises:
            MissingDependencyError: If a required dependency cannot be located.
            ResolutionError: If the graph is deeper than MAX_GRAPH_DEPTH.
        """
        config = self.session.config
        if auto_download is None:
            auto_download = config.download_automatically
        if tolerate_missing is None:
            tolerate_missing = config.tolerate_missing
        result: dict[tuple, ProjectNode] = {}
        self._walk(
            node,
            result,
            frozenset(),
            exclude_optionals,
            auto_download,
            frozenset(exclude_scopes),
            tolerate_missing,
            0,
        )
        return sorted(result.values(), key=node_sort_key)

    def _walk(
        self,
        node: ProjectNode,
        result: dict[tuple, ProjectNode],
        exclusions: frozenset[str],
        exclude_optionals: bool,
        auto_download: bool,
        exclude_scopes: frozenset[str],
        tolerate_missing: bool,
        depth: int,
    ) -> None:
        if depth > MAX_GRAPH_DEPTH:
            raise ResolutionError(
                f"Dependency graph deeper than {MAX_GRAPH_DEPTH} at {node.coordinate.compact()}"
            )
        for expanded, target in self._direct(
            node, exclusions, exclude_optionals, auto_download, exclude_scopes, tolerate_missing
        ):
            identity = target.coordinate.identity()
            if identity in result:
                continue
            result[identity] = target
            self._walk(
                target,
                result,
                carry_exclusions(node, expanded, exclusions),
                exclude_optionals,
                auto_download,
                exclude_scopes,
                tolerate_missing,
                depth + 1,
            )

    def direct_dependencies(
        self,
        node: ProjectNode,
        exclude_optionals: bool = False,
        auto_download: bool | None = None,
        exclude_scopes: Collection[str] = (),
        tolerate_missing: bool | None = None,
        exclusions: Collection[str] = (),
    ) -> Iterator[tuple[Coordinate, ProjectNode]]:
        """Yield `(expanded coordinate, node)` for the node's own dependencies, in declaration order.

        `exclusions` are the `groupId:artifactId` pairs carried down from the path that
        reached `node`; see `carry_exclusions`.
        """
        config = self.session.config
        yield from self._direct(
            node,
            frozenset(exclusions),
            exclude_optionals,
            config.download_automatically if auto_download is None else auto_download,
            frozenset(exclude_scopes),
            config.tolerate_missing if tolerate_missing is None else tolerate_missing,
        )

    def _direct(
        self,
        node: ProjectNode,
        exclusions: frozenset[str],
        exclude_optionals: bool,
        auto_download: bool,
        exclude_scopes: frozenset[str],
        tolerate_missing: bool,
    ) -> Iterator[tuple[Coordinate, ProjectNode]]:
        for dependency in node.dependencies:
            if exclude_optionals and dependency.optional:
                continue
            expanded = node.expand_coordinate(dependency)
            if expanded.effective_scope() in exclude_scopes:
                continue
            if exclusions and expanded.ga() in exclusions:
                logger.debug("Excluding %s (for %s)", expanded.ga(), node.artifact_id)
                continue
            target = self.find_node(node, expanded, auto_download)
            if target is None:
                if expanded.optional or (expanded.effective_scope() == "provided" and expanded.version is None):
                    logger.debug("Skipping artifact %s (for %s): not found", expanded.compact(), node.artifact_id)
                    continue
                if tolerate_missing:
                    logger.warning(
                        "Skipping artifact %s (for %s): not found", expanded.compact(), node.coordinate.compact()
                    )
                    continue
                raise MissingDependencyError(expanded.compact(), node.coordinate.compact())
            yield expanded, target

    # -- locating nodes ------------------------------------------------------

    def find_node(self, requester: ProjectNode, dependency: Coordinate, auto_download: bool) -> ProjectNode | None:
        """Locate the node for an expanded dependency coordinate, or None.

        Order: an existing `systemPath` file, the requester itself, the session memo,
        the workspace, the local repository, then (if allowed) the remote repositories.

        Raises:
            MissingDependencyError: If the coordinate lacks a groupId or artifactId.
            MalformedVersionError: If the version range cannot be parsed.
        """
        if dependency.system_path:
            path = Path(dependency.system_path)
            if path.exists():
                return self.session.fake_node(path, dependency)
        if dependency.version is None and dependency.effective_scope() == "provided":
            return None
        if dependency.group_id is None or dependency.artifact_id is None:
            raise MissingDependencyError(
                dependency.compact(), requester.coordinate.compact(), "need fully qualified GAVs"
            )
        own = requester.coordinate
        if (dependency.artifact_id, dependency.group_id, dependency.version) == (
            own.artifact_id,
            own.group_id,
            own.version,
        ):
            return requester

        key = dependency.key()
        return self.session.flights.do(key, lambda: self._locate(requester, dependency, key, auto_download))

    def _locate(
        self,
        requester: ProjectNode,
        dependency: Coordinate,
        key: str,
        auto_download: bool,
    ) -> ProjectNode | None:
        found, node = self.session.cached(key)
        if found:
            return node
        self.session.scan_workspace()
        found, node = self.session.cached(key)
        if found:
            return node
        node = self.session.source_project(dependency)
        if node is not None:
            logger.debug("Using %s for %s", node.coordinate.compact(), dependency.compact())
            return self.session.remember(key, node)
        if dependency.version is None:
            logger.warning("Skipping invalid dependency (version unset): %s", dependency.ga())
            return None
        return self._from_repository(requester, dependency, key, auto_download)

    def _miss(self, key: str, auto_download: bool) -> None:
        # A lookup that did not try the network may succeed later with downloads on.
        if auto_download or not self.session.config.download_automatically:
            self.session.remember(key, None)
        return None

    def _from_repository(
        self,
        requester: ProjectNode,
        dependency: Coordinate,
        key: str,
        auto_download: bool,
    ) -> ProjectNode | None:
        config = self.session.config
        downloading = auto_download and not config.offline_mode
        urls = self.session.repository_urls(requester)

        coordinate = dependency
        if coordinate.is_range() or coordinate.is_snapshot():
            if downloading:
                self.repository.refresh_metadata(coordinate, urls)
            coordinate = self.repository.pin(coordinate)
            if coordinate.is_range() and coordinate.snapshot_version is None:
                logger.warning("No version of %s matches %s", coordinate.ga(), coordinate.version)
                return self._miss(key, auto_download)

        pom = self.repository.pom_path(coordinate)
        if not pom.exists():
            if not downloading:
                logger.debug("Skipping artifact %s: not in %s", coordinate.compact(), self.repository.root)
                return self._miss(key, auto_download)
            try:
                self.repository.download(coordinate, urls, include_jar=False)
            except DownloadError as exc:
                if not coordinate.optional:
                    logger.warning("Could not download %s: %s", coordinate.artifact_id, exc)
                return self._miss(key, auto_download)
            pom = self.repository.pom_path(coordinate)

        node = load_repository_pom(pom, self.session, coordinate, requester.root())
        if node.is_jar() and not node.artifact_path.exists():
            if not downloading:
                self.session.forget(key)
                return None
            try:
                self.repository.download(coordinate, urls, include_pom=False)
            except DownloadError as exc:
                if not coordinate.optional:
                    logger.warning("Could not download %s: %s", coordinate.artifact_id, exc)
                return self._miss(key, auto_download)
            node.artifact_path = node.output_directory = self.repository.jar_path(node.coordinate)
        return self.session.remember(key, node)

    def download_dependencies(self, node: ProjectNode) -> list[ProjectNode]:
        """Resolve with downloads forced on, fetching everything but test dependencies."""
        return self.resolve(
            node, exclude_optionals=True, auto_download=True, exclude_scopes=BUILD_EXCLUDED_SCOPES
        )

"""Make-like up-to-date checks over the resolved dependency graph."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from pathlib import Path

from j_build.models import CheckKind, Freshness
from j_build.project import ProjectNode
from j_build.resolver import BUILD_EXCLUDED_SCOPES, DependencyResolver


logger = logging.getLogger(__name__)

SOURCE_EXTENSION = ".java"
CLASS_EXTENSION = ".class"
SKIPPED_SOURCES = ("package-info.java",)


def _mtime(path: Path) -> float:
    return path.stat().st_mtime


def iter_sources(source: Path, output: Path) -> Iterator[tuple[Path, Path]]:
    """Yield `(source file, expected class file)` pairs under a source tree."""
    if not source.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames.sort()
        relative = Path(dirpath).relative_to(source)
        for name in sorted(filenames):
            if not name.endswith(SOURCE_EXTENSION) or name in SKIPPED_SOURCES:
                continue
            class_name = name[: -len(SOURCE_EXTENSION)] + CLASS_EXTENSION
            yield Path(dirpath) / name, output / relative / class_name


def scan_sources(source: Path, output: Path, include_up_to_date: bool) -> tuple[list[Path], float]:
    """Return the sources needing compilation and the newest source mtime.

    With `include_up_to_date` every source is returned.
    """
    newest = 0.0
    selected: list[Path] = []
    for src, target in iter_sources(source, output):
        modified = _mtime(src)
        newest = max(newest, modified)
        if include_up_to_date or not target.exists() or _mtime(target) < modified:
            selected.append(src)
    return selected, newest


def newest_file(directory: Path) -> float:
    """Newest mtime of any file below `directory` (0 when absent)."""
    newest = 0.0
    if not directory.is_dir():
        return newest
    for dirpath, _, filenames in os.walk(directory):
        for name in filenames:
            newest = max(newest, _mtime(Path(dirpath) / name))
    return newest


class StalenessEngine:
    """Tri-state freshness verdicts per node and check kind, cached for the session.

    Checks on a dependency cycle are co-inductive: a node re-entered while its own check
    is still running counts as fresh. A fresh verdict that rests on such an assumption is
    held back until the assumed check finishes, and is stored only if that check ends
    fresh too. Stale verdicts are stored at once.
    """

    def __init__(self, resolver: DependencyResolver) -> None:
        self.resolver = resolver
        self.session = resolver.session
        self._local = threading.local()

    def _state(self) -> threading.local:
        local = self._local
        if not hasattr(local, "depths"):
            # (node id, kind) -> stack depth of the running check
            local.depths = {}
            # shallowest running check assumed fresh below the current one
            local.low = None
            # fresh verdicts waiting on a running check
            local.pending = []
        return local

    def is_up_to_date(self, node: ProjectNode, kind: CheckKind = CheckKind.COMPILED) -> bool:
        """Return whether `node` is fresh for `kind`; computed at most once per session."""
        verdict = node.freshness[kind]
        if verdict is not Freshness.UNKNOWN:
            return verdict is Freshness.FRESH
        local = self._state()
        depth = local.depths.get((node.id, kind))
        if depth is not None:
            local.low = depth if local.low is None else min(local.low, depth)
            return True
        verdict = self.session.flights.do(f"{kind.value}:{node.id}", lambda: self._settle(node, kind))
        return verdict is Freshness.FRESH

    def _settle(self, node: ProjectNode, kind: CheckKind) -> Freshness:
        if node.freshness[kind] is not Freshness.UNKNOWN:
            return node.freshness[kind]
        local = self._state()
        depth = len(local.depths)
        mark = len(local.pending)
        outer_low, local.low = local.low, None
        local.depths[(node.id, kind)] = depth
        try:
            fresh = self.check_up_to_date(node, kind)
        except BaseException:
            del local.pending[mark:]
            raise
        finally:
            del local.depths[(node.id, kind)]
            low, local.low = local.low, outer_low

        if fresh and low is not None and low < depth:
            local.pending.append(node)
            local.low = low if outer_low is None else min(outer_low, low)
            return Freshness.FRESH

        settled = local.pending[mark:]
        del local.pending[mark:]
        if fresh:
            for other in settled:
                other.freshness[kind] = Freshness.FRESH
        node.freshness[kind] = Freshness.FRESH if fresh else Freshness.STALE
        return node.freshness[kind]

    def check_up_to_date(self, node: ProjectNode, kind: CheckKind) -> bool:
        """Compute freshness without consulting the node's cache slot."""
        if not node.build_from_source:
            return True
        for dependency in self.resolver.resolve(node, exclude_optionals=True, exclude_scopes=BUILD_EXCLUDED_SCOPES):
            if dependency is node:
                continue
            if not self.is_up_to_date(dependency, kind):
                logger.debug("%s not up-to-date because of %s", node.artifact_id, dependency.artifact_id)
                return False

        stale, newest = scan_sources(node.source_path(), node.output_directory, include_up_to_date=False)
        if stale:
            shown = ", ".join(str(p) for p in stale[:3]) + (", ..." if len(stale) > 3 else "")
            logger.debug(
                "%s not up-to-date because %d source files are not up-to-date (%s)",
                node.artifact_id,
                len(stale),
                shown,
            )
            return False

        newest = max(newest, newest_file(node.resources_path()))
        if kind is CheckKind.PACKAGED and node.packaging != "pom":
            artifact = node.artifact_path
            if not artifact.exists() or _mtime(artifact) < newest:
                logger.debug("%s not up-to-date because %s is not up-to-date", node.artifact_id, artifact)
                return False
        return True

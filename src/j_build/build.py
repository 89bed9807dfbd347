"""Incremental builds: compile, copy resources, write the manifest and package jars."""

from __future__ import annotations

import logging
import os
import shutil
from collections import deque
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

import networkx as nx

from j_build.exceptions import BuildIOError, CompileError
from j_build.graph import build_graph
from j_build.models import BuildState, CheckKind
from j_build.project import DESCRIPTOR_NAME, ProjectNode
from j_build.resolver import BUILD_EXCLUDED_SCOPES, DependencyResolver
from j_build.staleness import StalenessEngine, scan_sources
from j_build.toolchain import (
    MANIFEST_PATH,
    ArtifactWriter,
    Compiler,
    JarWriter,
    JavacCompiler,
    format_manifest,
    parse_manifest,
)


logger = logging.getLogger(__name__)

CREATED_BY = "j-build"
COMPILE_EXCLUDED_SCOPES = ("test", "runtime")
RUNTIME_EXCLUDED_SCOPES = ("test", "provided")


def update_recursively(source: Path, target: Path) -> list[Path]:
    """Copy files from `source` into `target` when missing or older there."""
    copied: list[Path] = []
    if not source.is_dir():
        return copied
    for path in sorted(source.rglob("*")):
        if not path.is_file():
            continue
        destination = target / path.relative_to(source)
        if destination.exists() and destination.stat().st_mtime >= path.stat().st_mtime:
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, destination)
        copied.append(destination)
    return copied


def format_classpath(paths: Iterable[Path]) -> str:
    return os.pathsep.join(str(p) for p in paths)


def _source_entries(directory: Path, prefix: str) -> dict[str, Path]:
    if not directory.is_dir():
        return {}
    return {
        prefix + p.relative_to(directory).as_posix(): p for p in sorted(directory.rglob("*")) if p.is_file()
    }


class BuildOrchestrator:
    """Drives builds of ProjectNodes in dependency order.

    Compilation and packaging are delegated to the `Compiler` and `ArtifactWriter`
    collaborators; the defaults run `javac` and write jars with zipfile.
    """

    def __init__(
        self,
        resolver: DependencyResolver,
        staleness: StalenessEngine | None = None,
        compiler: Compiler | None = None,
        writer: ArtifactWriter | None = None,
    ) -> None:
        self.resolver = resolver
        self.session = resolver.session
        self.staleness = staleness or StalenessEngine(resolver)
        self.compiler = compiler or JavacCompiler()
        self.writer = writer or JarWriter()

    # -- single node -----------------------------------------------------------

    def build(
        self,
        node: ProjectNode,
        make_artifact: bool = False,
        force_build: bool = False,
        include_sources: bool = False,
    ) -> bool:
        """Build `node` after its stale dependencies.

        Args:
            node: The project to build.
            make_artifact: Also write the jar (checks staleness against the jar).
            force_build: Rebuild even when up-to-date; recompiles every source.
            include_sources: Add `pom.xml` and the source trees to the jar.

        Returns:
            True if the node was built by this call, False for a no-op.

        Raises:
            CompileError: If the compiler reports errors, here or in a dependency.
            BuildIOError: If the filesystem fails.
            ResolutionError: If the dependencies cannot be resolved.
        """
        if not node.build_from_source:
            return False
        kind = CheckKind.PACKAGED if make_artifact else CheckKind.COMPILED
        with node.lock:
            if node.state is BuildState.FAILED:
                raise CompileError(f"{node.coordinate.compact()} failed to build earlier in this session")
            if node.built or node.state is BuildState.COMPILING:
                return False
            if not force_build and self.staleness.is_up_to_date(node, kind):
                logger.debug("%s is up-to-date", node.artifact_id)
                node.state = BuildState.FRESH
                return False
            node.state = BuildState.COMPILING
            try:
                self._build(node, kind, make_artifact, force_build, include_sources)
            except BaseException:
                node.state = BuildState.FAILED
                raise
            node.built = True
            node.state = BuildState.BUILT
            return True

    def _build(
        self,
        node: ProjectNode,
        kind: CheckKind,
        make_artifact: bool,
        force_build: bool,
        include_sources: bool,
    ) -> None:
        full = force_build
        for dependency in self.resolver.resolve(node, exclude_optionals=True, exclude_scopes=BUILD_EXCLUDED_SCOPES):
            if dependency is node or self.staleness.is_up_to_date(dependency, kind):
                continue
            self.build(dependency, make_artifact)
            # Compiling only the changed files against a rebuilt classpath is unsafe.
            full = True

        source = node.source_path()
        resources = node.resources_path()
        if not source.exists() and not resources.exists():
            logger.debug("Not compiling aggregator %s", node.artifact_id)
            return

        target = node.output_directory
        try:
            target.mkdir(parents=True, exist_ok=True)
            sources, _ = scan_sources(source, target, include_up_to_date=full)
            if sources:
                logger.info(
                    "Compiling %d file%s in %s", len(sources), "s" if len(sources) > 1 else "", node.directory
                )
                classpath = self.compute_classpath(node, for_compile=True)
                logger.debug("using the class path: %s", format_classpath(classpath))
                self.compiler.compile(
                    sources,
                    classpath,
                    node.effective_source_version(),
                    node.effective_target_version(),
                    target,
                )
            update_recursively(resources, target)
            self._copy_descriptor(node)
            attributes = self.manifest_attributes(node)
            manifest = target / MANIFEST_PATH
            manifest.parent.mkdir(parents=True, exist_ok=True)
            manifest.write_text(format_manifest(attributes), encoding="utf-8")
        except OSError as exc:
            raise BuildIOError(f"Could not build {node.coordinate.compact()}: {exc}") from exc

        if make_artifact and node.packaging != "pom":
            extra: dict[str, Path] = {}
            if include_sources:
                pom = node.directory / DESCRIPTOR_NAME
                if pom.exists():
                    extra["pom.xml"] = pom
                extra.update(_source_entries(source, "src/main/java/"))
                extra.update(_source_entries(resources, "src/main/resources/"))
            self.writer.package(target, attributes, extra, node.artifact_path)

    def _copy_descriptor(self, node: ProjectNode) -> None:
        pom = node.directory / DESCRIPTOR_NAME
        if not pom.exists():
            return
        destination = node.output_directory / "META-INF" / "maven" / str(node.group_id) / str(node.artifact_id)
        destination.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(pom, destination / DESCRIPTOR_NAME)

    def manifest_attributes(self, node: ProjectNode) -> dict[str, str]:
        """Main manifest attributes, keeping any from a manifest already in the output directory."""
        attributes = {"Manifest-Version": "1.0"}
        existing = node.output_directory / MANIFEST_PATH
        if existing.exists():
            attributes.update(parse_manifest(existing.read_text(encoding="utf-8")))
        if node.main_class:
            attributes["Main-Class"] = node.main_class
        class_path = self.manifest_class_path(node)
        if class_path:
            attributes["Class-Path"] = class_path
        attributes["Created-By"] = CREATED_BY
        return attributes

    def manifest_class_path(self, node: ProjectNode) -> str | None:
        """Space separated jar names of the runtime jar dependencies, or None."""
        names = [
            f"{dep.artifact_id}-{dep.coordinate.version}.jar"
            for dep in self.resolver.resolve(node, exclude_optionals=True, exclude_scopes=RUNTIME_EXCLUDED_SCOPES)
            if dep is not node and dep.is_jar()
        ]
        return " ".join(names) or None

    # -- classpath and copies ------------------------------------------------

    def compute_classpath(self, node: ProjectNode, for_compile: bool = True) -> list[Path]:
        """Own output directory followed by the dependencies' classpath entries, in resolver order.

        Compile classpaths leave out `test` and `runtime` dependencies, runtime
        classpaths leave out `test` and `provided` ones.
        """
        scopes = COMPILE_EXCLUDED_SCOPES if for_compile else RUNTIME_EXCLUDED_SCOPES
        logger.debug("Get classpath for %s for %s", node.coordinate.compact(), "compile" if for_compile else "runtime")
        entries = [node.output_directory]
        for dep in self.resolver.resolve(node, exclude_optionals=True, exclude_scopes=scopes):
            if dep is node:
                continue
            logger.debug("Adding dependency %s to classpath", dep.coordinate.compact())
            entries.append(dep.classpath_entry())
        return entries

    def copy_dependencies(self, node: ProjectNode, directory: Path, only_newer: bool = True) -> list[Path]:
        """Copy the runtime dependency artifacts into `directory` as `<artifactId>.jar`.

        Returns:
            The files written.
        """
        copied: list[Path] = []
        try:
            for dep in self.resolver.resolve(node, exclude_optionals=True, exclude_scopes=RUNTIME_EXCLUDED_SCOPES):
                if dep is node:
                    continue
                source = dep.artifact_path
                destination = directory / f"{dep.artifact_id}.jar"
                if not source.is_file():
                    continue
                if only_newer and destination.exists() and destination.stat().st_mtime >= source.stat().st_mtime:
                    continue
                directory.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
                copied.append(destination)
        except OSError as exc:
            raise BuildIOError(f"Could not copy dependencies into {directory}: {exc}") from exc
        return copied

    # -- clean ---------------------------------------------------------------

    def clean(self, node: ProjectNode, _visited: set[int] | None = None) -> None:
        """Delete build outputs of `node` and of its source-built dependencies.

        Aggregators (`pom` packaging) clean their modules instead.
        """
        visited = set() if _visited is None else _visited
        if node.id in visited:
            return
        visited.add(node.id)
        if node.packaging == "pom":
            for child in node.children:
                self.clean(child, visited)
            return
        if not node.build_from_source:
            return
        for dep in self.resolver.resolve(node, exclude_optionals=True):
            self.clean(dep, visited)
        try:
            if node.output_directory.is_dir():
                shutil.rmtree(node.output_directory)
            elif node.output_directory.exists():
                node.output_directory.unlink()
            node.artifact_path.unlink(missing_ok=True)
        except OSError as exc:
            raise BuildIOError(f"Could not clean {node.coordinate.compact()}: {exc}") from exc
        logger.debug("Cleaned %s", node.artifact_id)

    # -- concurrent builds ---------------------------------------------------

    def build_all(
        self,
        node: ProjectNode,
        make_artifact: bool = False,
        force_build: bool = False,
        include_sources: bool = False,
        jobs: int | None = None,
    ) -> list[ProjectNode]:
        """Build `node`, its modules and their source-built dependencies on a worker pool.

        Each strongly connected component of the build graph is one task; a task is
        submitted once every component it depends on has finished. At most `jobs`
        tasks run at a time. After a failure nothing new is started, running tasks
        finish, and the first failure is raised.

        Returns:
            The nodes built by this call, in completion order.
        """
        jobs = jobs or self.session.config.jobs
        graph = build_graph(self.resolver, [node])
        condensed = nx.condensation(graph)
        waiting = {c: set(condensed.successors(c)) for c in condensed}
        dependents = {c: set(condensed.predecessors(c)) for c in condensed}
        ready = deque(
            sorted((c for c, deps in waiting.items() if not deps), key=lambda c: min(condensed.nodes[c]["members"]))
        )

        def run(component: int) -> list[ProjectNode]:
            members = [graph.nodes[i]["node"] for i in sorted(condensed.nodes[component]["members"])]
            return [m for m in members if self.build(m, make_artifact, force_build, include_sources)]

        built: list[ProjectNode] = []
        failure: BaseException | None = None
        running: dict[Future, int] = {}
        with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="j-build") as pool:
            while ready or running:
                while ready and failure is None and len(running) < jobs:
                    component = ready.popleft()
                    running[pool.submit(run, component)] = component
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    component = running.pop(future)
                    exc = future.exception()
                    if exc is not None:
                        logger.error("Build failed: %s", exc)
                        failure = failure or exc
                        continue
                    built.extend(future.result())
                    for dependent in sorted(dependents[component]):
                        waiting[dependent].discard(component)
                        if not waiting[dependent]:
                            ready.append(dependent)
                if failure is not None and ready:
                    logger.info("Cancelling %d queued build tasks", len(ready))
                    ready.clear()
        if failure is not None:
            raise failure
        return built

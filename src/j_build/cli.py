"""Typer CLI entry point for j-build."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from j_build.build import BuildOrchestrator, format_classpath
from j_build.config import BuildConfig
from j_build.db import create_sqlite_engine, init_db, record_resolution
from j_build.descriptor import load_project
from j_build.exceptions import CompileError, JBuildError
from j_build.graph import dependency_graph, reverse_dependencies
from j_build.models import CheckKind
from j_build.project import ProjectNode
from j_build.repository import HttpFetcher
from j_build.resolver import DependencyResolver
from j_build.session import ResolutionSession
from j_build.staleness import StalenessEngine
from j_build.visualize import build_dependency_tree

app = typer.Typer(add_completion=False, help="Resolve, check and build Maven projects.")
console = Console(emoji=False)

PomArgument = Annotated[Path, typer.Argument(help="Path to a pom.xml file or its directory.")]


def configure_logging(verbose: bool, debug: bool) -> None:
    """Send log records to stderr through Rich; INFO by default, DEBUG with --verbose/--debug."""
    level = logging.DEBUG if verbose or debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True, emoji=False), show_path=debug)],
        force=True,
    )


def _parse_defines(defines: list[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in defines:
        key, _, value = item.partition("=")
        if not key:
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        overrides[key] = value
    return overrides


@app.callback()
def main_options(
    ctx: typer.Context,
    offline: Annotated[bool, typer.Option("--offline", help="Never touch the network.")] = False,
    download: Annotated[
        bool, typer.Option("--download/--no-download", help="Download missing artifacts.")
    ] = False,
    local_repo: Annotated[
        Optional[Path], typer.Option("--local-repo", help="Local repository (default ~/.m2/repository).")
    ] = None,
    workspace: Annotated[
        Optional[list[Path]], typer.Option("--workspace", "-w", help="Directory holding more projects.")
    ] = None,
    define: Annotated[
        Optional[list[str]], typer.Option("--define", "-D", help="Property override key=value.")
    ] = None,
    jobs: Annotated[Optional[int], typer.Option("--jobs", "-j", help="Concurrent build tasks.")] = None,
    tolerate_missing: Annotated[
        bool, typer.Option("--tolerate-missing", help="Skip dependencies that cannot be found.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging.")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Debug logging.")] = False,
) -> None:
    """Options shared by every command; environment variables JBUILD_* provide the defaults."""
    config = BuildConfig.from_env()
    config.offline_mode = config.offline_mode or offline
    config.download_automatically = config.download_automatically or download
    config.tolerate_missing = config.tolerate_missing or tolerate_missing
    config.verbose = config.verbose or verbose
    config.debug = config.debug or debug
    if local_repo is not None:
        config.local_repository = local_repo.expanduser()
    if workspace:
        config.workspace_roots.extend(workspace)
    if define:
        config.property_overrides.update(_parse_defines(define))
    if jobs is not None:
        config.jobs = jobs
    try:
        config.validate()
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1) from None
    configure_logging(config.verbose, config.debug)
    ctx.obj = config


def _open(ctx: typer.Context, pom: Path) -> tuple[DependencyResolver, ProjectNode]:
    config: BuildConfig = ctx.obj if isinstance(ctx.obj, BuildConfig) else BuildConfig.from_env()
    fetcher = None if config.offline_mode else HttpFetcher()
    session = ResolutionSession(config, fetcher=fetcher)
    node = load_project(pom, session)
    return DependencyResolver(session), node


def _fail(exc: Exception) -> typer.Exit:
    console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
    return typer.Exit(code=1)


@app.command()
def deps(
    ctx: typer.Context,
    pom: PomArgument,
    flat: Annotated[bool, typer.Option("--flat", help="Print the sorted transitive set instead of a tree.")] = False,
    exclude_scope: Annotated[
        Optional[list[str]], typer.Option("--exclude-scope", "-s", help="Scope to leave out.")
    ] = None,
    exclude_optionals: Annotated[
        bool, typer.Option("--exclude-optionals", help="Leave out optional dependencies.")
    ] = False,
    reverse: Annotated[
        Optional[str], typer.Option("--reverse", help="Show who depends on this groupId:artifactId:version.")
    ] = None,
) -> None:
    """Resolve a project and print its dependencies."""
    scopes = exclude_scope or []
    try:
        resolver, node = _open(ctx, pom)
        if reverse:
            g = dependency_graph(resolver, node, exclude_optionals=exclude_optionals, exclude_scopes=scopes)
            preds = reverse_dependencies(g, reverse)
            table = Table(title=f"Reverse dependencies (who depends on {reverse})")
            table.add_column("#", style="dim", width=6)
            table.add_column("Dependent (predecessor)")
            for i, gav in enumerate(preds, start=1):
                table.add_row(str(i), gav)
            console.print(table)
            if not preds:
                console.print("[dim]No reverse dependencies found (or target not in graph).[/dim]")
            return
        if flat:
            for dep in resolver.resolve(node, exclude_optionals=exclude_optionals, exclude_scopes=scopes):
                console.print(dep.coordinate.compact(), markup=False, highlight=False)
            return
        console.print(
            build_dependency_tree(resolver, node, exclude_optionals=exclude_optionals, exclude_scopes=scopes)
        )
    except JBuildError as exc:
        raise _fail(exc) from None


@app.command()
def classpath(
    ctx: typer.Context,
    pom: PomArgument,
    runtime: Annotated[bool, typer.Option("--runtime", help="Runtime instead of compile classpath.")] = False,
) -> None:
    """Print the compile (or runtime) classpath."""
    try:
        resolver, node = _open(ctx, pom)
        entries = BuildOrchestrator(resolver).compute_classpath(node, for_compile=not runtime)
        console.print(format_classpath(entries), markup=False, highlight=False, soft_wrap=True)
    except JBuildError as exc:
        raise _fail(exc) from None


@app.command()
def uptodate(
    ctx: typer.Context,
    pom: PomArgument,
    jar: Annotated[bool, typer.Option("--jar", help="Also require the jar to be current.")] = False,
) -> None:
    """Exit 0 when the project is up-to-date, 2 when it needs a build."""
    try:
        resolver, node = _open(ctx, pom)
        kind = CheckKind.PACKAGED if jar else CheckKind.COMPILED
        fresh = StalenessEngine(resolver).is_up_to_date(node, kind)
    except JBuildError as exc:
        raise _fail(exc) from None
    if fresh:
        console.print(f"[green]Up-to-date[/green] {node.coordinate.compact()}")
        return
    console.print(f"[yellow]Stale[/yellow] {node.coordinate.compact()}")
    raise typer.Exit(code=2)


@app.command()
def build(
    ctx: typer.Context,
    pom: PomArgument,
    jar: Annotated[bool, typer.Option("--jar", help="Package the jar.")] = False,
    force: Annotated[bool, typer.Option("--force", "-f", help="Rebuild even when up-to-date.")] = False,
    sources: Annotated[bool, typer.Option("--sources", help="Include sources in the jar.")] = False,
) -> None:
    """Build the project, its modules and its source dependencies."""
    try:
        resolver, node = _open(ctx, pom)
        orchestrator = BuildOrchestrator(resolver)
        built = orchestrator.build_all(node, make_artifact=jar, force_build=force, include_sources=sources)
    except JBuildError as exc:
        if isinstance(exc, CompileError) and exc.diagnostics:
            console.print(exc.diagnostics, markup=False, highlight=False)
        raise _fail(exc) from None
    if not built:
        console.print(f"[dim]Nothing to do for {node.coordinate.compact()}[/dim]")
        return
    console.print(f"[green]Built[/green] {len(built)} project(s).")


@app.command()
def clean(ctx: typer.Context, pom: PomArgument) -> None:
    """Delete build outputs of the project and its source dependencies."""
    try:
        resolver, node = _open(ctx, pom)
        BuildOrchestrator(resolver).clean(node)
    except JBuildError as exc:
        raise _fail(exc) from None
    console.print(f"[green]Cleaned[/green] {node.coordinate.compact()}")


@app.command("get-dependencies")
def get_dependencies(ctx: typer.Context, pom: PomArgument) -> None:
    """Download every non-test dependency into the local repository."""
    try:
        resolver, node = _open(ctx, pom)
        fetched = resolver.download_dependencies(node)
    except JBuildError as exc:
        raise _fail(exc) from None
    console.print(f"[green]Resolved[/green] {len(fetched)} dependencies of {node.coordinate.compact()}.")


@app.command("copy-dependencies")
def copy_dependencies(
    ctx: typer.Context,
    pom: PomArgument,
    directory: Annotated[Path, typer.Argument(help="Where to copy the jars.")],
    all_files: Annotated[bool, typer.Option("--all", help="Copy even when the copy is newer.")] = False,
) -> None:
    """Copy the runtime dependency jars into a directory."""
    try:
        resolver, node = _open(ctx, pom)
        copied = BuildOrchestrator(resolver).copy_dependencies(node, directory, only_newer=not all_files)
    except JBuildError as exc:
        raise _fail(exc) from None
    console.print(f"[green]Copied[/green] {len(copied)} file(s) into [bold]{directory}[/bold].")


@app.command()
def record(
    ctx: typer.Context,
    pom: PomArgument,
    db: Annotated[Optional[Path], typer.Option("--db", help="SQLite db path.")] = None,
) -> None:
    """Resolve the project and persist the graph into SQLite (SQLModel)."""
    try:
        resolver, node = _open(ctx, pom)
        db_path = db or resolver.session.config.db_path
        engine = create_sqlite_engine(db_path)
        init_db(engine)
        added = record_resolution(engine, resolver, node)
    except (JBuildError, SQLAlchemyError) as exc:
        raise _fail(exc) from None
    console.print(f"[green]Recorded[/green] {added} edge(s) into [bold]{db_path}[/bold].")


def main() -> None:
    """Console-script entry point."""
    app()

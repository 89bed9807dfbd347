"""Rich rendering utilities for resolved dependency graphs."""

from __future__ import annotations

from collections.abc import Collection

from rich.markup import escape
from rich.tree import Tree

from j_build.project import ProjectNode
from j_build.resolver import DependencyResolver, carry_exclusions


def build_dependency_tree(
    resolver: DependencyResolver,
    node: ProjectNode,
    exclude_optionals: bool = False,
    exclude_scopes: Collection[str] = (),
) -> Tree:
    """Build a Rich Tree of the project's dependencies, expanding each artifact once.

    Args:
        resolver: Resolver of the current session.
        node: The project at the root of the tree.
        exclude_optionals: Leave out optional dependencies.
        exclude_scopes: Scope names to leave out.

    Returns:
        A Rich Tree object for rendering.
    """
    root = Tree(f"[bold]{node.coordinate.compact()}[/bold]")
    seen = {node.id}

    def add(branch: Tree, current: ProjectNode, exclusions: frozenset[str]) -> None:
        for dep, target in resolver.direct_dependencies(
            current, exclude_optionals=exclude_optionals, exclude_scopes=exclude_scopes, exclusions=exclusions
        ):
            label = escape((dep.pinned(target.version) if target.version else dep).label())
            if target.build_from_source:
                label += " [green](source)[/green]"
            if target.id in seen:
                branch.add(f"[dim]{label} (see above)[/dim]")
                continue
            seen.add(target.id)
            add(branch.add(label), target, carry_exclusions(current, dep, exclusions))

    add(root, node, frozenset())
    if not root.children:
        root.add("[dim]No dependencies found[/dim]")
    return root

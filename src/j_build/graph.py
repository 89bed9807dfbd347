from __future__ import annotations

from collections.abc import Iterable

import networkx as nx

from j_build.project import ProjectNode
from j_build.resolver import BUILD_EXCLUDED_SCOPES, DependencyResolver, carry_exclusions


def dependency_graph(
    resolver: DependencyResolver,
    root: ProjectNode,
    exclude_optionals: bool = False,
    exclude_scopes: Iterable[str] = (),
) -> nx.DiGraph:
    """Build a directed graph where A -> B means A directly depends on B.

    Nodes are `groupId:artifactId:version` strings reachable from `root`; edges carry
    the declared `scope` and `optional` flag.
    """
    scopes = tuple(exclude_scopes)
    g = nx.DiGraph()
    g.add_node(root.coordinate.compact())
    seen = {root.id}
    stack = [(root, frozenset())]
    while stack:
        node, exclusions = stack.pop()
        a = node.coordinate.compact()
        for dep, target in resolver.direct_dependencies(
            node, exclude_optionals=exclude_optionals, exclude_scopes=scopes, exclusions=exclusions
        ):
            b = target.coordinate.compact()
            g.add_node(b)
            if a != b:
                g.add_edge(a, b, scope=dep.effective_scope(), optional=dep.optional)
            if target.id not in seen:
                seen.add(target.id)
                stack.append((target, carry_exclusions(node, dep, exclusions)))
    return g


def reverse_dependencies(g: nx.DiGraph, target_gav: str) -> list[str]:
    """Return predecessors of target_gav (who depends on it)."""
    if target_gav not in g:
        return []
    return sorted(list(g.predecessors(target_gav)))


def build_graph(resolver: DependencyResolver, roots: Iterable[ProjectNode]) -> nx.DiGraph:
    """Graph of source-built nodes keyed by arena id, edges pointing from dependent to dependency.

    Every module below each root is included, and so is every source-built node its
    build-time dependencies reach. The ProjectNode is stored in the `node` attribute.
    """
    g = nx.DiGraph()
    stack = [n for root in roots for n in root.walk() if n.build_from_source]
    for node in stack:
        g.add_node(node.id, node=node)
    while stack:
        node = stack.pop()
        deps = resolver.resolve(node, exclude_optionals=True, exclude_scopes=BUILD_EXCLUDED_SCOPES)
        for dep in deps:
            if dep is node or not dep.build_from_source:
                continue
            if dep.id not in g:
                g.add_node(dep.id, node=dep)
                stack.append(dep)
            g.add_edge(node.id, dep.id)
    return g


def build_order(g: nx.DiGraph) -> list[list[ProjectNode]]:
    """Group a build graph into cycle-free batches, dependencies before dependents.

    Each entry is one strongly connected component: a single node, or every member of a
    dependency cycle, which must build together.
    """
    condensed = nx.condensation(g)
    order = []
    for component in reversed(list(nx.topological_sort(condensed))):
        members = sorted(condensed.nodes[component]["members"])
        order.append([g.nodes[i]["node"] for i in members])
    return order

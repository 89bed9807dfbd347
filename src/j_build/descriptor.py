"""Parse Maven pom.xml files into ProjectNode trees using lxml."""

from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import TYPE_CHECKING

from lxml import etree

from j_build.exceptions import (
    DescriptorModelError,
    DescriptorNotFoundError,
    DescriptorParseError,
    DownloadError,
)
from j_build.models import Coordinate
from j_build.project import DESCRIPTOR_NAME, ProjectNode
from j_build.repository import LocalRepository
from j_build.session import descriptor_key

if TYPE_CHECKING:
    from j_build.session import ResolutionSession


logger = logging.getLogger(__name__)


def _path(*names: str) -> str:
    """Namespace-agnostic relative XPath for nested child elements."""
    return "/".join(["."] + [f"*[local-name()='{n}']" for n in names])


def _text_first(node: etree._Element, xpath_expr: str) -> str | None:
    """Get text of the first matching element using namespace-agnostic XPath.

    Args:
        node: Element to query under.
        xpath_expr: XPath expression (should use local-name()).

    Returns:
        Text content if found and non-empty, otherwise None.
    """
    found = node.xpath(xpath_expr)
    if not found:
        return None
    first = found[0]
    if isinstance(first, etree._Element):
        text = (first.text or "").strip()
        return text or None
    if isinstance(first, str):
        text = first.strip()
        return text or None
    return None


def _texts(node: etree._Element, xpath_expr: str) -> list[str]:
    return [
        (n.text or "").strip()
        for n in node.xpath(xpath_expr)
        if isinstance(n, etree._Element) and (n.text or "").strip()
    ]


def _bool_text(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


def _parse_xml(path: Path) -> etree._Element:
    """Parse an XML file and return its root element.

    Raises:
        DescriptorNotFoundError: If the file does not exist.
        DescriptorParseError: If XML cannot be parsed.
    """
    if not path.exists():
        raise DescriptorNotFoundError(f"pom.xml not found: {path}")
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
        tree = etree.parse(str(path), parser=parser)
        return tree.getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise DescriptorParseError(f"Failed to parse pom.xml: {path}") from exc


def _parse_dependency(el: etree._Element) -> Coordinate:
    exclusions = set()
    for exclusion in el.xpath(_path("exclusions", "exclusion")):
        group_id = _text_first(exclusion, _path("groupId"))
        artifact_id = _text_first(exclusion, _path("artifactId"))
        if group_id is not None and artifact_id is not None:
            exclusions.add(f"{group_id}:{artifact_id}")
    return Coordinate(
        group_id=_text_first(el, _path("groupId")),
        artifact_id=_text_first(el, _path("artifactId")),
        version=_text_first(el, _path("version")),
        classifier=_text_first(el, _path("classifier")),
        scope=_text_first(el, _path("scope")),
        optional=_bool_text(_text_first(el, _path("optional"))),
        system_path=_text_first(el, _path("systemPath")),
        exclusions=frozenset(exclusions),
    )


def _merge_section(node: ProjectNode, container: etree._Element) -> None:
    """Add properties, dependencies and dependency management of a project or profile."""
    for prop in container.xpath(_path("properties") + "/*"):
        if not isinstance(prop, etree._Element):
            continue
        node.properties[etree.QName(prop).localname] = (prop.text or "").strip()
    for dep in container.xpath(_path("dependencies", "dependency")):
        node.dependencies.append(_parse_dependency(dep))
    for dep in container.xpath(_path("dependencyManagement", "dependencies", "dependency")):
        node.dependency_management.append(_parse_dependency(dep))
    for url in _texts(container, _path("repositories", "repository", "url")):
        if url not in node.repositories:
            node.repositories.append(url)


def _os_family_matches(family: str) -> bool:
    system = platform.system().lower()
    family = family.lower()
    if family == "windows":
        return system.startswith("win")
    if family.startswith("mac"):
        return system == "darwin" or system.startswith("mac")
    if family == "unix":
        return not system.startswith("win")
    logger.warning("Ignoring unknown OS family: %s", family)
    return False


def _profile_active(profile: etree._Element, node: ProjectNode) -> bool:
    """A profile is active when any of its activation conditions holds."""
    activation = profile.xpath(_path("activation"))
    if not activation:
        return False
    act = activation[0]
    if _bool_text(_text_first(act, _path("activeByDefault"))):
        return True
    name = _text_first(act, _path("property", "name"))
    if name is not None:
        negate = name.startswith("!")
        value = node.expand("${" + name.lstrip("!") + "}")
        expected = _text_first(act, _path("property", "value"))
        present = value is not None and (expected is None or value == expected)
        if present != negate:
            return True
    os_name = _text_first(act, _path("os", "name"))
    if os_name is not None and os_name.lower() == platform.system().lower():
        return True
    family = _text_first(act, _path("os", "family"))
    if family is not None and _os_family_matches(family):
        return True
    exists = node.expand(_text_first(act, _path("file", "exists")))
    if exists and (node.directory / exists).exists():
        return True
    missing = node.expand(_text_first(act, _path("file", "missing")))
    if missing and not (node.directory / missing).exists():
        return True
    return False


def _read_build_settings(node: ProjectNode, root: etree._Element) -> None:
    source_directory = _text_first(root, _path("build", "sourceDirectory"))
    if source_directory:
        node.source_directory = source_directory
    for plugin in root.xpath(_path("build", "plugins", "plugin")):
        artifact_id = _text_first(plugin, _path("artifactId"))
        if artifact_id == "maven-compiler-plugin":
            node.source_version = _text_first(plugin, _path("configuration", "source")) or node.source_version
            node.target_version = _text_first(plugin, _path("configuration", "target")) or node.target_version
        elif artifact_id == "maven-jar-plugin":
            node.main_class = (
                _text_first(plugin, _path("configuration", "archive", "manifest", "mainClass"))
                or node.main_class
            )


def _read_node(
    path: Path,
    root: etree._Element,
    session: ResolutionSession,
    parent: ProjectNode | None,
    build_from_source: bool,
) -> ProjectNode:
    """Create a node from the raw descriptor; the coordinate is expanded later."""
    raw_group_id = _text_first(root, _path("groupId"))
    raw_artifact_id = _text_first(root, _path("artifactId"))
    raw_version = _text_first(root, _path("version"))

    if raw_artifact_id is None:
        raise DescriptorModelError(f"Missing required <artifactId> in {path}")

    parent_coordinate = None
    if root.xpath(_path("parent")):
        parent_coordinate = Coordinate(
            group_id=_text_first(root, _path("parent", "groupId")),
            artifact_id=_text_first(root, _path("parent", "artifactId")),
            version=_text_first(root, _path("parent", "version")),
        )

    inherited = parent.coordinate if parent is not None else parent_coordinate
    group_id = raw_group_id or (inherited.group_id if inherited else None)
    version = raw_version or (inherited.version if inherited else None)
    if group_id is None:
        raise DescriptorModelError(f"Missing required <groupId> (or parent <groupId>) in {path}")

    node = session.arena.create(
        Coordinate(group_id=group_id, artifact_id=raw_artifact_id, version=version),
        path.parent,
        parent=parent,
        packaging=_text_first(root, _path("packaging")) or "jar",
        parent_coordinate=parent_coordinate,
        build_from_source=build_from_source,
    )
    node.modules = _texts(root, _path("modules", "module"))
    _merge_section(node, root)
    _read_build_settings(node, root)
    return node


def _finish(node: ProjectNode, root: etree._Element) -> None:
    """Expand the node's own coordinate and merge active profiles once its parent is linked."""
    node.coordinate = node.coordinate.model_copy(
        update={
            "group_id": node.expand(node.coordinate.group_id),
            "artifact_id": node.expand(node.coordinate.artifact_id),
            "version": node.expand(node.coordinate.version),
        }
    )
    for profile in root.xpath(_path("profiles", "profile")):
        if _profile_active(profile, node):
            logger.debug("Activating profile %s of %s", _text_first(profile, _path("id")), node.artifact_id)
            _merge_section(node, profile)
    if node.build_from_source:
        node.artifact_path = node.directory / "target" / node.coordinate.jar_name()


def _descriptor_file(path: str | Path) -> Path:
    p = Path(path)
    return p / DESCRIPTOR_NAME if p.is_dir() else p


def load_project(
    path: str | Path,
    session: ResolutionSession,
    parent: ProjectNode | None = None,
) -> ProjectNode:
    """Parse a source project and its `<modules>` into the session.

    Each descriptor is parsed once per session. A project loaded without a module parent
    gets its `<parent>` from the relative path (`../pom.xml`) or from the local repository.
    Not safe to call from several threads at once; `ResolutionSession.scan_workspace`
    serializes the calls it makes.

    Raises:
        DescriptorNotFoundError: If the file does not exist.
        DescriptorParseError: If XML cannot be parsed.
        DescriptorModelError: If required fields are missing.
    """
    pom_path = _descriptor_file(path).resolve()
    found, cached = session.cached(descriptor_key(pom_path))
    if found and cached is not None:
        return cached

    root = _parse_xml(pom_path)
    if parent is None:
        aggregator = _aggregating_parent(pom_path, root)
        if aggregator is not None:
            load_project(aggregator, session)
            found, cached = session.cached(descriptor_key(pom_path))
            if found and cached is not None:
                return cached

    node = _read_node(pom_path, root, session, parent, build_from_source=True)
    session.remember(descriptor_key(pom_path), node)
    if parent is not None:
        session.arena.attach(parent, node)
    elif node.parent_coordinate is not None:
        declared = _declared_parent(pom_path, root, node.parent_coordinate, session)
        if declared is not None:
            node.parent_id = declared.id
    _finish(node, root)
    session.register(node)
    logger.debug("Parsed %s (%s)", node.coordinate.compact(), pom_path)

    for module in node.modules:
        load_project(node.directory / module / DESCRIPTOR_NAME, session, parent=node)
    return node


def _relative_parent_path(pom_path: Path, root: etree._Element) -> Path:
    relative = _text_first(root, _path("parent", "relativePath")) or "../pom.xml"
    candidate = (pom_path.parent / relative).resolve()
    return candidate / DESCRIPTOR_NAME if candidate.is_dir() else candidate


def _aggregating_parent(pom_path: Path, root: etree._Element) -> Path | None:
    """Return the parent pom.xml on disk when it lists this project as a module."""
    if not root.xpath(_path("parent")):
        return None
    candidate = _relative_parent_path(pom_path, root)
    if not candidate.exists() or candidate == pom_path:
        return None
    parent_root = _parse_xml(candidate)
    if _text_first(parent_root, _path("artifactId")) != _text_first(root, _path("parent", "artifactId")):
        return None
    for module in _texts(parent_root, _path("modules", "module")):
        if (candidate.parent / module).resolve() == pom_path.parent:
            return candidate
    return None


def _declared_parent(
    pom_path: Path,
    root: etree._Element,
    coordinate: Coordinate,
    session: ResolutionSession,
) -> ProjectNode | None:
    candidate = _relative_parent_path(pom_path, root)
    if candidate.exists() and candidate != pom_path:
        parent_root = _parse_xml(candidate)
        if _text_first(parent_root, _path("artifactId")) == coordinate.artifact_id:
            return load_project(candidate, session)
    return repository_parent(coordinate, session, fallback=None)


def repository_parent(
    coordinate: Coordinate,
    session: ResolutionSession,
    fallback: ProjectNode | None,
) -> ProjectNode | None:
    """Load a `<parent>` pom from the local repository, downloading it when allowed."""
    if coordinate.group_id is None or coordinate.artifact_id is None or coordinate.version is None:
        return fallback
    repository = LocalRepository(session)
    urls = session.repository_urls(fallback)
    config = session.config
    downloading = config.download_automatically and not config.offline_mode
    if coordinate.is_snapshot():
        if downloading:
            repository.refresh_metadata(coordinate, urls)
        coordinate = repository.pin(coordinate)
    pom = repository.pom_path(coordinate)
    if not pom.exists() and downloading:
        try:
            repository.download(coordinate, urls, include_jar=False)
        except DownloadError as exc:
            logger.warning("Could not download parent %s: %s", coordinate.compact(), exc)
        pom = repository.pom_path(coordinate)
    if not pom.exists():
        logger.debug("Parent %s not in the local repository", coordinate.compact())
        return fallback
    return load_repository_pom(pom, session, coordinate, fallback)


def load_repository_pom(
    path: Path,
    session: ResolutionSession,
    coordinate: Coordinate,
    fallback_parent: ProjectNode | None,
) -> ProjectNode:
    """Parse a pom.xml from the local repository as a pre-built node.

    The node's artifact is the jar next to the pom, named after the coordinate's classifier;
    each classifier of one pom gets its own node. Without a resolvable `<parent>` the node
    hangs off `fallback_parent` (the requesting tree's root) so dependency management of
    the requesting project applies to it.
    """
    key = descriptor_key(path)
    if coordinate.classifier:
        key += f":{coordinate.classifier}"

    def _load() -> ProjectNode:
        found, cached = session.cached(key)
        if found and cached is not None:
            return cached
        root = _parse_xml(path)
        node = _read_node(path, root, session, None, build_from_source=False)
        node.coordinate = node.coordinate.model_copy(
            update={"classifier": coordinate.classifier, "snapshot_version": coordinate.snapshot_version}
        )
        session.remember(key, node)
        parent = None
        if node.parent_coordinate is not None:
            parent = repository_parent(node.parent_coordinate, session, fallback=fallback_parent)
        if parent is None:
            parent = fallback_parent
        if parent is not None and parent is not node:
            node.parent_id = parent.id
        _finish(node, root)
        jar = LocalRepository(session).jar_path(node.coordinate)
        node.artifact_path = jar
        node.output_directory = jar
        return node

    return session.flights.do(key, _load)

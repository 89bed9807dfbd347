"""Local repository layout, maven-metadata.xml pinning and remote fetching."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import requests
from lxml import etree

from j_build.exceptions import DownloadError, MalformedVersionError
from j_build.models import Coordinate
from j_build.versions import SNAPSHOT_SUFFIX, pick_version

if TYPE_CHECKING:
    from j_build.session import ResolutionSession


logger = logging.getLogger(__name__)

METADATA_NAMES = ("maven-metadata.xml", "maven-metadata-local.xml")
REQUEST_TIMEOUT = 30


class RepositoryFetcher(Protocol):
    """Fetches one file from a remote repository."""

    def fetch(self, base_url: str, path: str) -> bytes | None:
        """Return the file contents, or None when the repository does not have it.

        Raises:
            DownloadError: On transport errors; the caller fails over to the next URL.
        """
        ...


class HttpFetcher:
    """RepositoryFetcher over HTTP(S) using requests."""

    def __init__(self, timeout: float = REQUEST_TIMEOUT) -> None:
        self.timeout = timeout
        self._http = requests.Session()

    def fetch(self, base_url: str, path: str) -> bytes | None:
        url = base_url.rstrip("/") + "/" + path
        logger.debug("GET %s", url)
        try:
            res = self._http.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DownloadError(f"Could not fetch {url}: {exc}") from exc
        if res.status_code == 404:
            return None
        if res.status_code != 200:
            raise DownloadError(f"Could not fetch {url}: HTTP {res.status_code}")
        return res.content


def _text_all(node: etree._Element, xpath_expr: str) -> list[str]:
    return [
        (n.text or "").strip()
        for n in node.xpath(xpath_expr)
        if isinstance(n, etree._Element) and (n.text or "").strip()
    ]


def parse_metadata_versions(path: Path) -> list[str]:
    """Return `versioning/versions/version` entries of a maven-metadata.xml file."""
    root = _parse_metadata(path)
    return _text_all(
        root,
        "/*[local-name()='metadata']/*[local-name()='versioning']"
        "/*[local-name()='versions']/*[local-name()='version']",
    )


def parse_snapshot_version(path: Path, version: str) -> str | None:
    """Return the timestamped version a `-SNAPSHOT` version currently points to.

    Uses `versioning/snapshot/{timestamp,buildNumber}`; None for locally installed
    snapshots (no timestamp).
    """
    root = _parse_metadata(path)
    base = "/*[local-name()='metadata']/*[local-name()='versioning']/*[local-name()='snapshot']"
    timestamp = _text_all(root, base + "/*[local-name()='timestamp']")
    build_number = _text_all(root, base + "/*[local-name()='buildNumber']")
    if not timestamp or not build_number:
        return None
    return f"{version[: -len(SNAPSHOT_SUFFIX)]}-{timestamp[0]}-{build_number[0]}"


def _parse_metadata(path: Path) -> etree._Element:
    try:
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        return etree.parse(str(path), parser=parser).getroot()
    except (OSError, etree.XMLSyntaxError) as exc:
        raise MalformedVersionError(f"Failed to parse repository metadata: {path}") from exc


class LocalRepository:
    """The `~/.m2/repository` layout plus downloads into it."""

    def __init__(self, session: ResolutionSession) -> None:
        self.session = session
        self.root = Path(session.config.local_repository)

    # -- layout ----------------------------------------------------------------

    def artifact_directory(self, coordinate: Coordinate) -> Path:
        return self.root.joinpath(*(coordinate.group_id or "").split("."), coordinate.artifact_id or "")

    def version_directory(self, coordinate: Coordinate) -> Path:
        version = coordinate.version if coordinate.is_snapshot() else coordinate.effective_version()
        return self.artifact_directory(coordinate) / str(version)

    def relative_path(self, coordinate: Coordinate, name: str) -> str:
        return self.version_directory(coordinate).relative_to(self.root).as_posix() + "/" + name

    def pom_path(self, coordinate: Coordinate) -> Path:
        return self._existing(coordinate, Coordinate.pom_name)

    def jar_path(self, coordinate: Coordinate) -> Path:
        return self._existing(coordinate, Coordinate.jar_name)

    def _existing(self, coordinate: Coordinate, file_name) -> Path:
        # A pinned snapshot may only be installed under its -SNAPSHOT name.
        path = self.version_directory(coordinate) / file_name(coordinate)
        if path.exists() or coordinate.snapshot_version is None or not coordinate.is_snapshot():
            return path
        fallback = self.version_directory(coordinate) / file_name(
            coordinate.model_copy(update={"snapshot_version": None})
        )
        return fallback if fallback.exists() else path

    # -- metadata --------------------------------------------------------------

    def _metadata_directory(self, coordinate: Coordinate) -> Path:
        if coordinate.is_range():
            return self.artifact_directory(coordinate)
        return self.version_directory(coordinate)

    def refresh_metadata(self, coordinate: Coordinate, urls: list[str]) -> None:
        """Download maven-metadata.xml for a range or snapshot, at most once per session."""
        if self.session.config.offline_mode or self.session.fetcher is None:
            return
        if not self.session.claim_refresh(coordinate):
            return
        directory = self._metadata_directory(coordinate)
        relative = directory.relative_to(self.root).as_posix() + "/maven-metadata.xml"
        for url in urls:
            try:
                data = self.session.fetcher.fetch(url, relative)
            except DownloadError as exc:
                logger.debug("Metadata refresh from %s failed: %s", url, exc)
                continue
            if data is None:
                continue
            _write(directory / "maven-metadata.xml", data)
            logger.debug("Refreshed metadata of %s from %s", coordinate.compact(), url)
            return
        logger.debug("No repository has metadata for %s", coordinate.compact())

    def pin(self, coordinate: Coordinate) -> Coordinate:
        """Pin a range or snapshot to a concrete version using local metadata.

        Ranges that match nothing are returned unchanged (still unpinned).

        Raises:
            MalformedVersionError: If the range expression cannot be parsed.
        """
        directory = self._metadata_directory(coordinate)
        if coordinate.is_range():
            candidates: list[str] = []
            for name in METADATA_NAMES:
                if (directory / name).exists():
                    candidates.extend(parse_metadata_versions(directory / name))
            if not candidates and directory.is_dir():
                candidates = [p.name for p in directory.iterdir() if p.is_dir()]
            picked = pick_version(str(coordinate.version), candidates)
            return coordinate.pinned(picked) if picked else coordinate
        if coordinate.is_snapshot():
            for name in METADATA_NAMES:
                if (directory / name).exists():
                    pinned = parse_snapshot_version(directory / name, str(coordinate.version))
                    if pinned:
                        return coordinate.pinned(pinned)
        return coordinate

    # -- downloads -------------------------------------------------------------

    def download(
        self,
        coordinate: Coordinate,
        urls: list[str],
        *,
        include_pom: bool = True,
        include_jar: bool = True,
    ) -> None:
        """Fetch the pom and/or jar into the local repository, trying `urls` in order.

        All requested files must come from the same repository; a repository missing
        one of them, or failing, is skipped in favor of the next URL.

        Raises:
            DownloadError: If no repository yields the artifact.
        """
        if self.session.fetcher is None:
            raise DownloadError(f"Could not download {coordinate.jar_name()}: no fetcher configured")
        names = []
        if include_pom:
            names.append(coordinate.pom_name())
        if include_jar:
            names.append(coordinate.jar_name())
        for url in urls:
            logger.debug("Trying to download %s from %s", coordinate.compact(), url)
            try:
                payloads = {}
                for name in names:
                    data = self.session.fetcher.fetch(url, self.relative_path(coordinate, name))
                    if data is None:
                        raise DownloadError(f"{name} not found at {url}")
                    payloads[name] = data
            except DownloadError as exc:
                logger.debug("%s", exc)
                continue
            for name, data in payloads.items():
                _write(self.version_directory(coordinate) / name, data)
            return
        raise DownloadError(f"Could not download {coordinate.jar_name()}")


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)

from __future__ import annotations

from pathlib import Path

from j_build.project import DESCRIPTOR_NAME


SKIP_DIRS = {"target", ".git", "node_modules"}


def find_project_descriptors(root: Path) -> list[Path]:
    """Find top-level pom.xml files under root.

    A descriptor is top-level when its directory's parent holds no pom.xml; nested
    descriptors are reached through `<modules>` of their top-level project instead.

    Args:
        root: A directory to scan recursively, or a single pom file.

    Returns:
        Sorted unique list of pom.xml files.
    """
    if root.is_file():
        return [root]
    if not root.is_dir():
        return []

    poms: list[Path] = []
    for p in root.rglob(DESCRIPTOR_NAME):
        if not p.is_file():
            continue
        if SKIP_DIRS.intersection(p.relative_to(root).parts[:-1]):
            continue
        if (p.parent.parent / DESCRIPTOR_NAME).exists() and p.parent != root:
            continue
        poms.append(p)
    return sorted(set(poms))

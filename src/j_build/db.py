"""SQLite storage for resolved dependency graphs."""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from j_build.db_models import Artifact, DependencyEdge
from j_build.project import ProjectNode
from j_build.resolver import DependencyResolver, carry_exclusions


logger = logging.getLogger(__name__)


def create_sqlite_engine(db_path: Path) -> Engine:
    """Create a SQLite engine.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        SQLAlchemy Engine connected to the SQLite database.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}", echo=False)


def init_db(engine: Engine) -> None:
    """Create the tables if they do not exist yet."""
    SQLModel.metadata.create_all(engine)


def _artifact(node: ProjectNode) -> Artifact:
    return Artifact(
        gav=node.coordinate.compact(),
        group_id=node.group_id or "Unknown",
        artifact_id=node.artifact_id or "Unknown",
        version=node.version or "Unknown",
        packaging=node.packaging,
        from_source=node.build_from_source,
        path=str(node.artifact_path),
    )


def record_resolution(engine: Engine, resolver: DependencyResolver, root: ProjectNode) -> int:
    """Persist `root` and everything it reaches, with one edge per direct dependency.

    Existing rows are kept, so recording the same graph twice is harmless.

    Returns:
        The number of edges added.
    """
    added = 0
    with Session(engine) as session:
        seen: set[int] = set()
        stack = [(root, frozenset())]
        while stack:
            node, exclusions = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            a_gav = node.coordinate.compact()
            if session.get(Artifact, a_gav) is None:
                session.add(_artifact(node))
                session.flush()
            for dep, target in resolver.direct_dependencies(node, exclusions=exclusions):
                b_gav = target.coordinate.compact()
                if session.get(Artifact, b_gav) is None:
                    session.add(_artifact(target))
                    session.flush()
                existing = session.exec(
                    select(DependencyEdge).where(
                        DependencyEdge.from_gav == a_gav,
                        DependencyEdge.to_gav == b_gav,
                        DependencyEdge.scope == dep.effective_scope(),
                        DependencyEdge.optional == dep.optional,
                    )
                ).first()
                if existing is None:
                    session.add(
                        DependencyEdge(
                            from_gav=a_gav,
                            to_gav=b_gav,
                            scope=dep.effective_scope(),
                            optional=dep.optional,
                        )
                    )
                    added += 1
                stack.append((target, carry_exclusions(node, dep, exclusions)))
            session.flush()
        session.commit()
    logger.debug("Recorded %d new edges for %s", added, root.coordinate.compact())
    return added


def load_edges(engine: Engine) -> list[DependencyEdge]:
    with Session(engine) as session:
        return list(session.exec(select(DependencyEdge)).all())

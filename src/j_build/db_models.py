from __future__ import annotations

from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Artifact(SQLModel, table=True):
    """A resolved artifact stored as a single row.

    `gav` (group:artifact:version, pinned version for ranges and snapshots) is the
    primary key.
    """
    gav: str = Field(primary_key=True)
    group_id: str
    artifact_id: str
    version: str
    packaging: str = Field(default="jar")
    from_source: bool = Field(default=False)
    path: Optional[str] = Field(default=None)


class DependencyEdge(SQLModel, table=True):
    """A resolved dependency edge between two artifacts (A -> B means A depends on B)."""
    __table_args__ = (
        # Re-recording the same graph must not duplicate edges.
        UniqueConstraint("from_gav", "to_gav", "scope", "optional", name="uq_dep_edge"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    from_gav: str = Field(index=True)
    to_gav: str = Field(index=True)
    scope: Optional[str] = Field(default=None)
    optional: Optional[bool] = Field(default=None)

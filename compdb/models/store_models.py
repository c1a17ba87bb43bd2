"""
Pydantic models for store configuration, compiled queries and mutation results.
"""
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class StoreState(str, Enum):
    """Lifecycle states of a store handle."""
    UNINITIALIZED = "uninitialized"
    READ_ONLY = "read_only"
    READ_WRITE = "read_write"
    CLOSED = "closed"


class StoreConfig(BaseModel):
    """Configuration for opening a compound database."""
    path: Path
    read_only: bool = False
    keep_connection: bool = Field(
        default=True,
        description="Hold one connection for the life of the handle. If False, "
                    "every operation opens and closes its own connection."
    )
    create: bool = Field(
        default=True,
        description="Create missing tables when opening read-write."
    )
    timeout: float = Field(
        default=5.0, gt=0,
        description="Seconds to wait for another connection's lock to clear."
    )


class CompiledQuery(BaseModel):
    """A translated read query, ready to execute."""
    sql: str
    params: list[Any] = Field(default_factory=list)
    columns: list[str]
    tables: list[str]


class Diagnostic(BaseModel):
    """Non-fatal condition reported by a mutation."""
    code: str
    message: str


class MutationResult(BaseModel):
    """Outcome of an insert or delete.

    ids holds the identities assigned by an insert or removed by a delete.
    """
    table: str
    operation: str
    rows: int = 0
    ids: list[Any] = Field(default_factory=list)
    added_columns: list[str] = Field(default_factory=list)
    cascaded: dict[str, int] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def has_diagnostics(self) -> bool:
        return len(self.diagnostics) > 0

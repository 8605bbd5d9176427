"""Change events pushed by the record stores."""
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional
from pydantic import BaseModel, Field


class ChangeKind(str, Enum):
    """Kind of row-level change."""

    INSERT = "insert"
    UPDATE = "update"

    def __str__(self) -> str:
        return self.value


class ChangeEvent(BaseModel):
    """A row mutation published after commit."""

    kind: ChangeKind
    table: str
    record: Dict[str, Any]


class ChangeFilter(BaseModel):
    """
    Selects the events a subscription receives.

    ``status`` applies to every kind; ``status_by_kind`` narrows a single
    kind, e.g. inserts with status pending while updates pass with any
    status.
    """

    table: str
    kinds: FrozenSet[ChangeKind] = frozenset({ChangeKind.INSERT, ChangeKind.UPDATE})
    receiver_id: Optional[str] = None
    status: Optional[str] = None
    status_by_kind: Mapping[ChangeKind, str] = Field(default_factory=dict)

    def matches(self, event: ChangeEvent) -> bool:
        """Check whether an event passes this filter."""
        if event.table != self.table or event.kind not in self.kinds:
            return False
        record = event.record
        if self.receiver_id is not None and record.get("receiver_id") != self.receiver_id:
            return False
        if self.status is not None and record.get("status") != self.status:
            return False
        kind_status = self.status_by_kind.get(event.kind)
        if kind_status is not None and record.get("status") != kind_status:
            return False
        return True

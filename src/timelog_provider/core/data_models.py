"""Data models for the TFS time-log provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass(frozen=True)
class WorkItemLink:
    """A parent → child pair returned by a tree query.

    ``source_id == 0`` marks a root-level link: the target is a top-level
    backlog item or bug rather than a child of another work item.
    """

    source_id: int
    target_id: int
    link_type: str | None = None

    @property
    def is_root(self) -> bool:
        return self.source_id == 0


@dataclass
class LinkQueryResult:
    """Links from a tree query and the reference names of its columns."""

    links: list[WorkItemLink] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RawWorkItem:
    """A work item as returned by the server, keyed by field reference name."""

    id: int
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IterationFilter:
    """Filter predicate shared by the tree query and the flat query."""

    project_name: str
    iteration_path: str
    work_item_types: tuple[str, ...] = ("Product Backlog Item", "Bug")
    excluded_state: str = "Removed"


@dataclass(frozen=True)
class EvaluationContext:
    """What the evaluation pipeline hands over for one retrieval."""

    iteration_path: str
    project_name: str


@dataclass
class TimeLogRecord:
    """A time-trackable work item for one iteration."""

    work_item_id: int = 0
    title: str = ""
    type: str = ""
    iteration_path: str = ""
    assigned_to: str = ""
    state: str = ""
    activity: str = ""
    is_task_marked_as_done: bool = False
    remaining_work: float | None = None
    tracking_date: date = field(default_factory=date.today)
    tasks: list[TimeLogRecord] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation, tasks included."""
        return {
            "work_item_id": self.work_item_id,
            "title": self.title,
            "type": self.type,
            "iteration_path": self.iteration_path,
            "assigned_to": self.assigned_to,
            "state": self.state,
            "activity": self.activity,
            "is_task_marked_as_done": self.is_task_marked_as_done,
            "remaining_work": self.remaining_work,
            "tracking_date": self.tracking_date.isoformat(),
            "tasks": [task.to_dict() for task in self.tasks],
            "custom_fields": dict(self.custom_fields),
        }

"""Work item field reference names used by queries and conversion."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any

TASK_TYPE = "Task"
DONE_STATE = "Done"
REMOVED_STATE = "Removed"


@dataclass(frozen=True)
class FieldNames:
    """Reference names of the server-side schema fields.

    These belong to the server's process template, so every name can be
    overridden from configuration (see :meth:`from_overrides`).
    """

    id: str = "System.Id"
    title: str = "System.Title"
    work_item_type: str = "System.WorkItemType"
    iteration_path: str = "System.IterationPath"
    assigned_to: str = "System.AssignedTo"
    state: str = "System.State"
    remaining_work: str = "Microsoft.VSTS.Scheduling.RemainingWork"
    activity: str = "Microsoft.VSTS.Common.Activity"
    team_project: str = "System.TeamProject"
    backlog_priority: str = "Microsoft.VSTS.Common.BacklogPriority"
    blocked: str = "Microsoft.VSTS.CMMI.Blocked"
    priority: str = "Microsoft.VSTS.Common.Priority"

    @classmethod
    def from_overrides(cls, overrides: dict[str, Any] | None) -> FieldNames:
        """Build a ``FieldNames`` with *overrides* applied; unknown keys are ignored."""
        if not overrides:
            return cls()
        known = {f.name for f in fields(cls)}
        return replace(cls(), **{k: str(v) for k, v in overrides.items() if k in known})

    @property
    def query_columns(self) -> list[str]:
        """Columns selected by the tree and flat queries."""
        return [
            self.id,
            self.title,
            self.backlog_priority,
            self.assigned_to,
            self.state,
            self.remaining_work,
            self.blocked,
            self.work_item_type,
            self.iteration_path,
            self.activity,
        ]

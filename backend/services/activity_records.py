"""Typed records produced by the team activity fetch.

Every record names the work item it belongs to and carries a timestamp;
``record_type`` tags the variant the same way the JSON output does.
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Optional


@dataclass(frozen=True)
class ActivityRecord:
    work_item: str
    work_item_name: str
    project: str
    actor: Optional[str]
    time: datetime

    record_type: ClassVar[str] = "record"

    def to_dict(self) -> dict:
        return {
            "type": self.record_type,
            "workItem": self.work_item,
            "workItemName": self.work_item_name,
            "project": self.project,
            "actor": self.actor,
            "time": self.time.isoformat() if self.time else None,
        }


@dataclass(frozen=True)
class Activity(ActivityRecord):
    """One change-log entry: ``field`` went from ``old_value`` to ``new_value``."""

    field: str = "state"
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    verb: str = "updated"
    relationships: dict = dataclasses.field(default_factory=dict)

    record_type: ClassVar[str] = "activity"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "verb": self.verb,
            "relationships": dict(self.relationships),
        })
        return data


@dataclass(frozen=True)
class Comment(ActivityRecord):
    comment: str = ""

    record_type: ClassVar[str] = "comment"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["comment"] = self.comment
        return data


@dataclass(frozen=True)
class Subitem(ActivityRecord):
    """A sub-issue of a fetched work item, with its own progress counters."""

    parent_work_item: Optional[str] = None
    parent_work_item_name: Optional[str] = None
    state: str = "Unknown"
    priority: str = "none"
    assignees: tuple = ()
    completed_issues: int = 0
    total_issues: int = 0
    percentage_complete: int = 0

    record_type: ClassVar[str] = "subitem"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "parentWorkItem": self.parent_work_item,
            "parentWorkItemName": self.parent_work_item_name,
            "state": self.state,
            "priority": self.priority,
            "assignees": list(self.assignees),
            "progress": {
                "completedIssues": self.completed_issues,
                "totalIssues": self.total_issues,
                "percentageComplete": self.percentage_complete,
            },
        })
        return data


@dataclass(frozen=True)
class WorkItemSnapshot(ActivityRecord):
    """Current state of a relevant work item that had no activity in the window."""

    state: str = "Unknown"
    priority: str = "none"
    assignees: tuple = ()
    created_at: Optional[datetime] = None

    record_type: ClassVar[str] = "work_item_snapshot"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "state": self.state,
            "priority": self.priority,
            "assignees": list(self.assignees),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": data["time"],
        })
        return data

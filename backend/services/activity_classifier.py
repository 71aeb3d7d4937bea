"""State classification and per-person aggregation of activity records."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from services.activity_records import Activity, Comment, Subitem, WorkItemSnapshot
from services.plane_helpers import truncate_text

logger = logging.getLogger(__name__)

# Case-insensitive substrings, checked in CATEGORY_ORDER; first match wins.
STATE_PATTERNS = {
    "completed": ("done", "closed", "complete", "completed", "resolved"),
    "blocked": ("block", "blocked", "blocking", "stuck", "on hold"),
    "inProgress": ("progress", "review", "active", "working", "started", "in qa"),
    "backlog": ("backlog", "todo", "to do", "open", "new", "planned"),
}
CATEGORY_ORDER = ("completed", "blocked", "inProgress")
DEFAULT_CATEGORY = "backlog"

STATE_FIELDS = {"state"}
ASSIGNMENT_FIELDS = {"assignees", "assignee"}

COMMENT_DISPLAY_LENGTH = 200
COMMENT_STATE = "In Progress (Updated via comment)"
UPDATED_STATE = "In Progress (Updated)"

# Tie-break for records of one work item sharing a timestamp.
RECORD_PRIORITY = {
    Activity: 3,
    Subitem: 2,
    WorkItemSnapshot: 1,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def matches_state_category(state, category: str) -> bool:
    if not state or not isinstance(state, str):
        return False
    state_lower = state.lower()
    return any(pattern in state_lower for pattern in STATE_PATTERNS.get(category, ()))


def classify_state(state) -> str:
    """Bucket a state name into completed, blocked, inProgress or backlog."""
    for category in CATEGORY_ORDER:
        if matches_state_category(state, category):
            return category
    return DEFAULT_CATEGORY


def _state_of(record):
    """State carried by a record, or None when it says nothing about state."""
    if isinstance(record, Activity):
        if record.field in STATE_FIELDS:
            return record.new_value or "Unknown"
        return None
    if isinstance(record, (Subitem, WorkItemSnapshot)):
        return record.state
    return None


def classify(records: list, comment_limit: int = COMMENT_DISPLAY_LENGTH) -> dict:
    """Group records into completed / inProgress / todo work items plus comments.

    The latest-timestamped state-bearing record decides where a work item
    goes; equal timestamps fall back to RECORD_PRIORITY and then to input
    order. Items that were only commented on or edited without a state
    change count as in progress. Every item lands in exactly one bucket.
    """
    latest = {}
    touched = {}
    relationships = {}
    comments = []

    for index, record in enumerate(records):
        touched.setdefault(record.work_item, record.work_item_name)

        if isinstance(record, Comment):
            text = (record.comment or "").strip()
            if text:
                comments.append({
                    "id": record.work_item,
                    "name": record.work_item_name,
                    "comment": truncate_text(text, comment_limit),
                    "actor": record.actor,
                    "time": record.time.isoformat() if record.time else None,
                })
            continue

        if isinstance(record, Activity):
            if record.relationships:
                relationships[record.work_item] = dict(record.relationships)
            if record.field in ASSIGNMENT_FIELDS:
                logger.debug(f"Skipping assignment-only activity for {record.work_item}")
                continue

        state = _state_of(record)
        if state is None:
            continue

        rank = (record.time or _EPOCH, RECORD_PRIORITY.get(type(record), 0), index)
        current = latest.get(record.work_item)
        if current is None or rank > current[0]:
            latest[record.work_item] = (rank, state, record.work_item_name)

    commented = {c["id"] for c in comments}
    buckets = {"completed": [], "inProgress": [], "todo": []}

    for work_item_id in sorted(touched):
        name = touched[work_item_id]
        ref = {"id": work_item_id, "name": name}
        if work_item_id in relationships:
            ref["relationships"] = relationships[work_item_id]

        if work_item_id in latest:
            _, state, name = latest[work_item_id]
            ref["name"] = name
            category = classify_state(state)
            if category == "completed":
                buckets["completed"].append(ref)
            elif category == "blocked":
                ref["state"] = "Blocked"
                buckets["inProgress"].append(ref)
            elif category == "inProgress":
                ref["state"] = state
                buckets["inProgress"].append(ref)
            else:
                ref["state"] = state
                buckets["todo"].append(ref)
        elif work_item_id in commented:
            ref["state"] = COMMENT_STATE
            ref["hasComments"] = True
            buckets["inProgress"].append(ref)
        else:
            ref["state"] = UPDATED_STATE
            buckets["inProgress"].append(ref)

    return {
        "completed": buckets["completed"],
        "inProgress": buckets["inProgress"],
        "todo": buckets["todo"],
        "comments": comments,
        "relationships": relationships,
    }


@dataclass
class PersonSummary:
    """One person's work for a reporting run."""

    name: str
    completed: list = field(default_factory=list)
    in_progress: list = field(default_factory=list)
    todo: list = field(default_factory=list)
    comments: list = field(default_factory=list)

    @property
    def has_activity(self) -> bool:
        return bool(self.completed or self.in_progress or self.todo or self.comments)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "completed": self.completed,
            "inProgress": self.in_progress,
            "todo": self.todo,
            "comments": self.comments,
        }


def build_person_summary(name: str, records: list,
                         comment_limit: int = COMMENT_DISPLAY_LENGTH) -> PersonSummary:
    classified = classify(records, comment_limit)
    return PersonSummary(
        name=name,
        completed=classified["completed"],
        in_progress=classified["inProgress"],
        todo=classified["todo"],
        comments=classified["comments"],
    )

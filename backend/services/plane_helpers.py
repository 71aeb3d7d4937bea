"""Small helpers for reading Plane payloads."""

import re
from datetime import datetime, timezone
from typing import Callable, Optional

_NAME_SEPARATORS = re.compile(r"[.\-_\s]+")
_HTML_TAGS = re.compile(r"<[^>]*>")


def normalize_name(name) -> str:
    """Lowercase a name and drop separators.

    "shruti.dhasmana", "Shruti Dhasmana" and "shruti_dhasmana" all
    normalise to "shrutidhasmana".
    """
    if not name or not isinstance(name, str):
        return ""
    return _NAME_SEPARATORS.sub("", name.lower())


def names_match(name1, name2) -> bool:
    if not name1 or not name2:
        return False
    return normalize_name(name1) == normalize_name(name2)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a Plane timestamp into an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = None
        formats = [
            "%Y-%m-%dT%H:%M:%S.%f%z",   # 2024-10-31T12:11:56.289123Z / +05:30
            "%Y-%m-%dT%H:%M:%S%z",
            "%Y-%m-%dT%H:%M:%S.%f",
            "%Y-%m-%dT%H:%M:%S",
            "%Y-%m-%d",
        ]
        for fmt in formats:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except (TypeError, ValueError):
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_date_in_range(date: Optional[datetime], start_date: datetime,
                     end_date: datetime) -> bool:
    if date is None:
        return False
    return start_date <= date <= end_date


def get_comment_text(comment: dict) -> str:
    if comment.get("comment_stripped"):
        return comment["comment_stripped"]
    html = comment.get("comment_html") or ""
    return _HTML_TAGS.sub("", html).strip()


def get_actor_id(item: dict) -> Optional[str]:
    actor = item.get("actor") or item.get("created_by") or item.get("user_id")
    if isinstance(actor, dict):
        return actor.get("id")
    return actor


def get_work_item_state(work_item: dict) -> str:
    state_detail = work_item.get("state_detail")
    if isinstance(state_detail, dict) and state_detail.get("name"):
        return state_detail["name"]
    state = work_item.get("state")
    if isinstance(state, dict):
        return state.get("name") or "Unknown"
    return state or "Unknown"


def get_work_item_priority(work_item: dict) -> str:
    return work_item.get("priority") or "none"


def _person_label(person: dict) -> Optional[str]:
    return person.get("display_name") or person.get("email")


def get_assignee_ids(work_item: dict) -> list:
    ids = []
    for assignee in work_item.get("assignees") or []:
        if isinstance(assignee, dict):
            if assignee.get("id"):
                ids.append(assignee["id"])
        elif assignee:
            ids.append(assignee)
    for detail in work_item.get("assignee_details") or []:
        if detail.get("id") and detail["id"] not in ids:
            ids.append(detail["id"])
    return ids


def get_assignee_names(work_item: dict,
                       resolve: Optional[Callable[[str], str]] = None) -> list:
    """Display names of a work item's assignees.

    Uses ``assignee_details`` or expanded ``assignees`` when present; bare
    assignee ids are passed through ``resolve`` when one is given.
    """
    details = work_item.get("assignee_details") or []
    if details:
        return [_person_label(a) or "Unassigned" for a in details]

    names = []
    for assignee in work_item.get("assignees") or []:
        if isinstance(assignee, dict):
            names.append(_person_label(assignee) or "Unassigned")
        elif resolve is not None:
            names.append(resolve(assignee))
    return names


def member_display_name(member: dict) -> Optional[str]:
    """Display name of a workspace/project member entry, whatever its nesting."""
    user_data = member.get("member") or member.get("user") or member
    if not isinstance(user_data, dict):
        user_data = member
    return (
        member.get("display_name")
        or user_data.get("display_name")
        or user_data.get("first_name")
        or user_data.get("email")
    )


def member_ids(member: dict) -> list:
    """Every id a member entry can be referenced by."""
    candidates = [member.get("id"), member.get("member_id")]
    for nested_key in ("member", "user"):
        nested = member.get(nested_key)
        if isinstance(nested, dict):
            candidates.append(nested.get("id"))
        elif isinstance(nested, str):
            candidates.append(nested)

    ids = []
    for candidate in candidates:
        if candidate and candidate not in ids:
            ids.append(candidate)
    return ids


def calculate_completion_percentage(completed, total) -> int:
    if not total:
        return 0
    return round(completed / total * 100)


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."

"""Daily person and team summaries built on top of the activity collection."""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from services.activity_classifier import (
    COMMENT_DISPLAY_LENGTH,
    build_person_summary,
    classify,
)
from services.activity_records import Subitem
from services.plane_errors import PlaneApiError
from services.plane_helpers import (
    calculate_completion_percentage,
    member_display_name,
    parse_timestamp,
)
from services.team_activities import TeamActivityService

logger = logging.getLogger(__name__)

WEEK_HINT = re.compile(r"Week\s+(\d+)", re.IGNORECASE)
NO_CYCLES_TEXT = "No active cycles"


def get_date_range(date_key: str) -> tuple:
    """UTC start and end of the day named by ``date_key`` (YYYY-MM-DD)."""
    try:
        day = datetime.strptime(date_key, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date format: {date_key}. Expected YYYY-MM-DD.") from None

    start = day.replace(tzinfo=timezone.utc)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def _cycle_day(value):
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def find_relevant_cycles(cycles: list, date_key: str) -> list:
    """Cycles whose start/end dates contain the given day."""
    query_day, _ = get_date_range(date_key)
    query_day = query_day.date()

    relevant = []
    for cycle in cycles:
        start = _cycle_day(cycle.get("startDate"))
        end = _cycle_day(cycle.get("endDate"))
        if not start or not end:
            logger.debug(f"Cycle {cycle.get('name')} has no dates, skipping")
            continue
        in_range = start <= query_day <= end
        logger.debug(f"Cycle {cycle.get('name')}: {start} to {end}, in range: {in_range}")
        if in_range:
            relevant.append(cycle)
    return relevant


def cycles_from_week_hints(cycles: list, work_item_names) -> list:
    """Cycles named after a "Week N" mentioned in any of the work item names."""
    hinted = set()
    for name in work_item_names:
        match = WEEK_HINT.search(name or "")
        if match:
            hinted.add(f"Week {match.group(1)}")
    return [c for c in cycles if c.get("name") in hinted]


def cycle_completion(cycle: dict) -> int:
    return calculate_completion_percentage(
        cycle.get("completedIssues") or 0, cycle.get("totalIssues") or 0
    )


def format_cycle_info(cycles: list) -> str:
    if not cycles:
        return NO_CYCLES_TEXT
    return "\n".join(f"{c.get('name')} -> {cycle_completion(c)}% completed" for c in cycles)


def _cycle_status(cycle: dict) -> str:
    if cycle.get("isCurrent"):
        return "Current"
    if cycle.get("isActive"):
        return "Active"
    return "Completed"


def _bulleted(lines: list) -> str:
    return "\n".join(lines) if lines else "  None"


def format_team_data_for_prompt(members: list) -> str:
    """Plain text block describing each member's day, one section per member.

    ``members`` are PersonSummary dicts. Only the first comment of each work
    item is shown.
    """
    sections = []
    for member in members:
        completed = [f"  • {t['id']}: {t['name']}" for t in member.get("completed", [])]
        in_progress = [
            f"  • {t['id']}: {t['name']} ({t.get('state')})"
            for t in member.get("inProgress", [])
        ]
        todo = [f"  • {t['id']}: {t['name']} ({t.get('state')})" for t in member.get("todo", [])]

        first_comments = {}
        for comment in member.get("comments", []):
            first_comments.setdefault(comment["id"], comment["comment"])
        comments = [f"  • {task_id}: {text}" for task_id, text in first_comments.items()]

        sections.append(
            f"MEMBER: {member['name']}\n"
            f"COMPLETED:\n{_bulleted(completed)}\n"
            f"IN_PROGRESS:\n{_bulleted(in_progress)}\n"
            f"TODO:\n{_bulleted(todo)}\n"
            f"COMMENTS:\n{_bulleted(comments)}"
        )
    return "\n\n".join(sections)


def is_ignored_member(name: str, ignored_members) -> bool:
    name_lower = name.lower()
    return any(ignored.lower() in name_lower for ignored in ignored_members or [] if ignored)


class TeamSummaryService:
    """Builds per-person and per-team daily reports."""

    def __init__(self, activity_service: TeamActivityService,
                 ignored_members: Optional[list] = None,
                 comment_limit: int = COMMENT_DISPLAY_LENGTH):
        self.activity_service = activity_service
        self.fetcher = activity_service.fetcher
        self.ignored_members = list(ignored_members or [])
        self.comment_limit = comment_limit

    def _latest_subitems(self, records: list) -> list:
        latest = {}
        for record in records:
            if not isinstance(record, Subitem):
                continue
            existing = latest.get(record.work_item)
            if existing is None or (record.time and existing.time and record.time > existing.time):
                latest[record.work_item] = record
        return [
            {
                "id": s.work_item,
                "name": s.work_item_name,
                "parent": s.parent_work_item,
                "state": s.state,
                "progressPercentage": s.percentage_complete,
            }
            for s in latest.values()
        ]

    def _project_cycles(self, project: dict, date_key: str, records: list) -> list:
        cycles = self.fetcher.get_cycles(project["id"])
        logger.info(f"Project {project.get('identifier')} has {len(cycles)} total cycles")

        relevant = find_relevant_cycles(cycles, date_key)
        if not relevant and cycles:
            relevant = cycles_from_week_hints(cycles, (r.work_item_name for r in records))
            if relevant:
                logger.info(f"Matched cycles by work item names: {[c.get('name') for c in relevant]}")

        return [
            {
                "name": c.get("name"),
                "status": _cycle_status(c),
                "totalIssues": c.get("totalIssues") or 0,
                "completedIssues": c.get("completedIssues") or 0,
                "percentageComplete": cycle_completion(c),
            }
            for c in relevant
        ]

    def person_daily_summary(self, person_name: str, date_key: str,
                             project_filter: Optional[str] = None) -> dict:
        """One person's work on one day, grouped by project."""
        logger.info(
            f"Generating person daily summary for {person_name} on {date_key}"
            + (f" (project: {project_filter})" if project_filter else "")
        )
        start, end = get_date_range(date_key)
        self.fetcher.cache.start_session(f"person:{person_name}")
        records = self.activity_service.get_team_activities(start, end, project_filter, person_name)

        summary = {
            "person": person_name,
            "date": date_key,
            "team": self.fetcher.client.workspace_slug or "Workspace",
            "projects": [],
        }
        if not records:
            return summary

        by_project = {}
        for record in records:
            by_project.setdefault(record.project or "Unknown", []).append(record)

        lookup = {}
        for project in self.fetcher.get_projects():
            lookup[project.get("identifier")] = project
            lookup[project.get("name")] = project

        for project_key in sorted(by_project):
            project_records = by_project[project_key]
            classified = classify(project_records, self.comment_limit)
            blockers = [i for i in classified["inProgress"] if i.get("state") == "Blocked"]
            in_progress = [i for i in classified["inProgress"] if i.get("state") != "Blocked"]

            project = lookup.get(project_key)
            cycles = self._project_cycles(project, date_key, project_records) if project else []

            summary["projects"].append({
                "project": project_key,
                "completed": classified["completed"],
                "inProgress": in_progress,
                "todo": classified["todo"],
                "blockers": blockers,
                "comments": classified["comments"],
                "subitems": self._latest_subitems(project_records),
                "cycles": cycles,
            })

        return summary

    def _member_summary(self, member: dict, start: datetime, end: datetime,
                        project_identifier: str):
        name = member_display_name(member)
        if not name:
            logger.warning("Skipping member with unknown name")
            return None
        if is_ignored_member(name, self.ignored_members):
            logger.info(f"Skipping ignored member: {name}")
            return None

        logger.info(f"Processing member: {name}")
        try:
            records = self.activity_service.get_team_activities(
                start, end, project_identifier, name
            )
        except PlaneApiError as e:
            logger.warning(f"Error fetching activities for {name}: {e}")
            return None

        logger.info(f"Member {name}: {len(records)} records")
        return build_person_summary(name, records, self.comment_limit)

    def team_daily_summary(self, project_filter: str, date_key: str) -> dict:
        """Every project member's day, plus the cycle the day falls in.

        Starts a fresh cache session scoped to the project so the run does
        not reuse history cached by an earlier report.
        """
        start, end = get_date_range(date_key)
        projects = self.activity_service.resolve_projects(project_filter)
        if not projects:
            raise ValueError(f"Project not found: {project_filter}")
        project = projects[0]
        project_identifier = project.get("identifier") or project.get("name")

        cache = self.fetcher.cache
        session = cache.start_session(project["id"])
        cache.clear_activity_caches()
        self.fetcher.preload_all_users()

        members = self.fetcher.get_project_members(project["id"])
        logger.info(f"Found {len(members)} members in project {project.get('name')}")

        cycle_info = format_cycle_info(
            find_relevant_cycles(self.fetcher.get_cycles(project["id"]), date_key)
        )
        logger.info(f"Cycle info: {cycle_info}")

        summaries = []
        for member in members:
            person = self._member_summary(member, start, end, project_identifier)
            if person is not None:
                summaries.append(person.to_dict())

        logger.info(f"Team summary complete: {len(summaries)} members")
        return {
            "project": project.get("name"),
            "projectIdentifier": project_identifier,
            "date": date_key,
            "session": session,
            "cycleInfo": cycle_info,
            "members": summaries,
        }

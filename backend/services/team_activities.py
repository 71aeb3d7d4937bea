"""Team activity collection across projects and work items.

Turns "all relevant activity for project P between T0 and T1" into a bounded
fan-out of cached, deduplicated upstream calls and flattens the results into
one list of typed records.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from services.activity_classifier import classify_state
from services.activity_records import Activity, Comment, Subitem, WorkItemSnapshot
from services.plane_errors import AccessDeniedError, PlaneApiError
from services.plane_fetchers import PlaneDataFetcher
from services.plane_helpers import (
    calculate_completion_percentage,
    get_actor_id,
    get_assignee_ids,
    get_assignee_names,
    get_comment_text,
    get_work_item_priority,
    get_work_item_state,
    is_date_in_range,
    member_ids,
    names_match,
    parse_timestamp,
)
from services.plane_request import ConcurrencyLimiter

logger = logging.getLogger(__name__)

# Activity fields that describe links between work items.
RELATIONSHIP_FIELDS = (
    "relates_to",
    "blocked_by",
    "blocking",
    "duplicate",
    "start_before",
    "start_after",
    "finish_before",
    "finish_after",
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class FetchTask:
    """One work item that survived the pre-filter and needs its history fetched."""

    project_id: str
    work_item_id: str
    work_item_identifier: str
    work_item_name: str
    project_identifier: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    assignees: list = field(default_factory=list)
    state: str = "Unknown"
    priority: str = "none"


def extract_relationships(activities: list) -> dict:
    """Current value of each relationship field, from newest-first history.

    The most recent activity for a field wins; if that activity cleared
    the relation, the field is absent from the result.
    """
    ordered = sorted(activities, key=_activity_sort_key, reverse=True)

    seen = {}
    for activity in ordered:
        field_name = activity.get("field")
        if field_name in RELATIONSHIP_FIELDS and field_name not in seen:
            seen[field_name] = activity.get("new_value")
    return {name: value for name, value in seen.items() if value}


def _activity_sort_key(activity: dict) -> datetime:
    timestamp = parse_timestamp(activity.get("created_at") or activity.get("updated_at"))
    return timestamp or _EPOCH


def _actor_name_from(item: dict, fetcher: PlaneDataFetcher) -> Optional[str]:
    detail = item.get("actor_detail")
    if isinstance(detail, dict) and detail.get("display_name"):
        return detail["display_name"]
    return fetcher.resolve_user_name(get_actor_id(item))


def _should_include_actor(actor_filter: Optional[str], actor_name: Optional[str]) -> bool:
    if not actor_filter:
        return True
    return names_match(actor_name, actor_filter)


def _is_assigned_to_actor(assignees, actor_filter: Optional[str]) -> bool:
    if not actor_filter:
        return True
    return any(names_match(a, actor_filter) for a in assignees or [])


class TeamActivityService:
    """Collects typed activity records for a date window."""

    MAX_CONCURRENT_ACTIVITY_FETCHES = 5
    MAX_PROJECT_WORKERS = 3

    def __init__(self, fetcher: PlaneDataFetcher,
                 limiter: Optional[ConcurrencyLimiter] = None,
                 max_project_workers: Optional[int] = None):
        self.fetcher = fetcher
        self.limiter = limiter or ConcurrencyLimiter(self.MAX_CONCURRENT_ACTIVITY_FETCHES)
        self.max_project_workers = max_project_workers or self.MAX_PROJECT_WORKERS

    def resolve_projects(self, project_filter: Optional[str] = None) -> list:
        """Projects in the workspace, optionally narrowed by name, identifier or id."""
        projects = self.fetcher.get_projects()
        if not project_filter:
            return projects

        filter_lower = project_filter.lower()
        matched = [
            p for p in projects
            if (p.get("name") or "").lower() == filter_lower
            or (p.get("identifier") or "").lower() == filter_lower
            or p.get("id") == project_filter
        ]
        if not matched:
            logger.warning(f"No projects found matching filter: {project_filter}")
        else:
            logger.info(f"Filtered to project: {', '.join(p.get('name', '') for p in matched)}")
        return matched

    def _project_member_ids(self, project: dict) -> set:
        try:
            members = self.fetcher.get_project_members(project["id"])
        except AccessDeniedError:
            logger.warning(f"No access to members of {project.get('identifier')}, skipping relevance check")
            return set()

        ids = set()
        for member in members:
            ids.update(member_ids(member))
        return ids

    def _prepare_tasks(self, project: dict, start_date: datetime,
                       end_date: datetime) -> list:
        """Work items of one project touched in the window by a project member."""
        project_id = project["id"]
        project_identifier = project.get("identifier") or project.get("name")

        try:
            work_items = self.fetcher.get_work_items(project_id)
        except AccessDeniedError:
            logger.warning(f"Skipping project {project_identifier}: no access (403)")
            return []

        logger.info(f"Project {project_identifier}: {len(work_items)} work items")
        if not work_items:
            return []

        relevant_ids = self._project_member_ids(project)

        tasks = []
        for work_item in work_items:
            created_at = parse_timestamp(work_item.get("created_at"))
            updated_at = parse_timestamp(work_item.get("updated_at"))
            if not (is_date_in_range(created_at, start_date, end_date)
                    or is_date_in_range(updated_at, start_date, end_date)):
                continue

            if relevant_ids:
                touched_by = set(get_assignee_ids(work_item))
                touched_by.update(
                    i for i in (work_item.get("created_by"), work_item.get("updated_by")) if i
                )
                if not touched_by & relevant_ids:
                    continue

            tasks.append(FetchTask(
                project_id=work_item.get("project_id") or work_item.get("project") or project_id,
                work_item_id=work_item["id"],
                work_item_identifier=f"{project_identifier}-{work_item.get('sequence_id')}",
                work_item_name=work_item.get("name", ""),
                project_identifier=project_identifier,
                created_at=created_at,
                updated_at=updated_at,
                assignees=get_assignee_names(work_item, self.fetcher.resolve_user_name),
                state=get_work_item_state(work_item),
                priority=get_work_item_priority(work_item),
            ))

        logger.info(f"Project {project_identifier}: {len(tasks)} work items in range")
        return tasks

    def _fetch_item_history(self, task: FetchTask) -> tuple:
        """Fetch activities, comments and subitems of one item concurrently.

        A failed fetch is logged and treated as empty so the others still count.
        """
        sources = {
            "activities": self.fetcher.get_activities,
            "comments": self.fetcher.get_comments,
            "subitems": self.fetcher.get_subitems,
        }
        results = {}
        with ThreadPoolExecutor(max_workers=len(sources)) as executor:
            futures = {
                name: executor.submit(fetch, task.project_id, task.work_item_id)
                for name, fetch in sources.items()
            }
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except PlaneApiError as e:
                    logger.warning(
                        f"Error fetching {name} for {task.work_item_identifier}: {e}"
                    )
                    results[name] = []
        return results["activities"], results["comments"], results["subitems"]

    def _activity_records(self, task: FetchTask, activities: list, start_date: datetime,
                          end_date: datetime, actor_filter: Optional[str]) -> list:
        relationships = extract_relationships(activities)
        records = []
        for activity in activities:
            activity_time = parse_timestamp(activity.get("created_at") or activity.get("updated_at"))
            if not is_date_in_range(activity_time, start_date, end_date):
                continue

            actor_name = _actor_name_from(activity, self.fetcher)
            if not _should_include_actor(actor_filter, actor_name):
                continue

            logger.debug(f"Activity: {task.work_item_identifier} by {actor_name}")
            records.append(Activity(
                work_item=task.work_item_identifier,
                work_item_name=task.work_item_name,
                project=task.project_identifier,
                actor=actor_name,
                time=activity_time,
                field=activity.get("field") or "state",
                old_value=activity.get("old_value"),
                new_value=activity.get("new_value"),
                verb=activity.get("verb") or "updated",
                relationships=relationships,
            ))
        return records

    def _comment_records(self, task: FetchTask, comments: list, start_date: datetime,
                         end_date: datetime, actor_filter: Optional[str]) -> list:
        records = []
        for comment in comments:
            comment_time = parse_timestamp(comment.get("created_at"))
            if not is_date_in_range(comment_time, start_date, end_date):
                continue

            actor_name = _actor_name_from(comment, self.fetcher)
            if not _should_include_actor(actor_filter, actor_name):
                continue

            records.append(Comment(
                work_item=task.work_item_identifier,
                work_item_name=task.work_item_name,
                project=task.project_identifier,
                actor=actor_name,
                time=comment_time,
                comment=get_comment_text(comment),
            ))
        return records

    def _subitem_records(self, task: FetchTask, subitems: list,
                         actor_filter: Optional[str]) -> list:
        records = []
        for subitem in subitems:
            assignees = get_assignee_names(subitem, self.fetcher.resolve_user_name)
            if not _is_assigned_to_actor(assignees, actor_filter):
                continue

            progress = subitem.get("progress") or {}
            completed = progress.get("completed_issues") or 0
            total = progress.get("total_issues") or 0
            updated_at = parse_timestamp(subitem.get("updated_at"))
            records.append(Subitem(
                work_item=f"{task.project_identifier}-{subitem.get('sequence_id')}",
                work_item_name=subitem.get("name", ""),
                project=task.project_identifier,
                actor=None,
                time=updated_at or parse_timestamp(subitem.get("created_at")),
                parent_work_item=task.work_item_identifier,
                parent_work_item_name=task.work_item_name,
                state=get_work_item_state(subitem),
                priority=get_work_item_priority(subitem),
                assignees=tuple(assignees or ["Unassigned"]),
                completed_issues=completed,
                total_issues=total,
                percentage_complete=calculate_completion_percentage(completed, total),
            ))
        return records

    @staticmethod
    def _snapshot(task: FetchTask) -> WorkItemSnapshot:
        return WorkItemSnapshot(
            work_item=task.work_item_identifier,
            work_item_name=task.work_item_name,
            project=task.project_identifier,
            actor=None,
            time=task.updated_at or task.created_at,
            state=task.state or "Unknown",
            priority=task.priority or "none",
            assignees=tuple(task.assignees),
            created_at=task.created_at,
        )

    def _collect_task(self, task: FetchTask, start_date: datetime, end_date: datetime,
                      actor_filter: Optional[str]) -> list:
        """All records for one work item, or a snapshot when it had none."""
        with self.limiter:
            try:
                activities, comments, subitems = self._fetch_item_history(task)
                records = self._activity_records(task, activities, start_date, end_date, actor_filter)
                records.extend(self._comment_records(task, comments, start_date, end_date, actor_filter))
                records.extend(self._subitem_records(task, subitems, actor_filter))
            except PlaneApiError as e:
                logger.warning(f"Error fetching activities for {task.work_item_identifier}: {e}")
                records = []

        if not records and _is_assigned_to_actor(task.assignees, actor_filter):
            records.append(self._snapshot(task))
        return records

    def get_team_activities(self, start_date: datetime, end_date: datetime,
                            project_filter: Optional[str] = None,
                            actor_filter: Optional[str] = None) -> list:
        """Every relevant record between ``start_date`` and ``end_date``.

        Records come back in no particular order; sort by ``time`` where
        order matters.
        """
        start_date = parse_timestamp(start_date)
        end_date = parse_timestamp(end_date)
        logger.info(
            f"Fetching team activities from {start_date.isoformat()} to {end_date.isoformat()}"
            + (f" for project: {project_filter}" if project_filter else "")
            + (f" and actor: {actor_filter}" if actor_filter else "")
        )

        projects = self.resolve_projects(project_filter)
        if not projects:
            return []

        tasks = []
        with ThreadPoolExecutor(max_workers=self.max_project_workers) as executor:
            futures = [
                executor.submit(self._prepare_tasks, project, start_date, end_date)
                for project in projects
            ]
            for future in futures:
                tasks.extend(future.result())

        logger.info(f"Fetching history for {len(tasks)} work items")

        records = []
        if tasks:
            with ThreadPoolExecutor(max_workers=self.limiter.max_concurrent) as executor:
                futures = [
                    executor.submit(self._collect_task, task, start_date, end_date, actor_filter)
                    for task in tasks
                ]
                for future in futures:
                    records.extend(future.result())

        logger.info(f"Total activities found: {len(records)}")
        return records

    def run_activity_report(self, start_date: datetime, end_date: datetime,
                            project_filter: Optional[str] = None,
                            actor_filter: Optional[str] = None) -> list:
        """get_team_activities() as a standalone run, in a fresh cache session."""
        scope = f"activities:{project_filter or '*'}:{actor_filter or '*'}"
        self.fetcher.cache.start_session(scope)
        return self.get_team_activities(start_date, end_date, project_filter, actor_filter)

    def get_work_items_snapshot(self) -> dict:
        """Current state of every work item, grouped by state category."""
        snapshot = {
            "completed": [],
            "inProgress": [],
            "blocked": [],
            "backlog": [],
            "total": 0,
        }

        for project in self.fetcher.get_projects():
            project_identifier = project.get("identifier") or project.get("name")
            try:
                work_items = self.fetcher.get_work_items(project["id"])
            except AccessDeniedError:
                logger.warning(f"Skipping project {project_identifier}: no access (403)")
                continue

            for work_item in work_items:
                item = {
                    "id": f"{project_identifier}-{work_item.get('sequence_id')}",
                    "name": work_item.get("name", ""),
                    "project": project_identifier,
                    "state": get_work_item_state(work_item),
                    "priority": get_work_item_priority(work_item),
                    "assignees": get_assignee_names(work_item, self.fetcher.resolve_user_name),
                    "createdAt": work_item.get("created_at"),
                    "updatedAt": work_item.get("updated_at"),
                }
                snapshot[classify_state(item["state"])].append(item)
                snapshot["total"] += 1

        return snapshot

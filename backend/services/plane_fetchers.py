"""Cached accessors for Plane resources.

Each ``get_*`` method checks the session-scoped cache, falls back to a
retried upstream request, and writes the result back through the cache.
List endpoints follow ``next_cursor`` up to a safety cap.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from services.plane_cache import CacheService
from services.plane_client import PlaneClient, normalize_page
from services.plane_errors import AccessDeniedError, PaginationExhausted, PlaneApiError
from services.plane_helpers import member_display_name, member_ids, parse_timestamp
from services.plane_request import RequestExecutor

logger = logging.getLogger(__name__)

USER_TABLE_KEY = "user_table"


class PlaneDataFetcher:
    """Typed, cached access to projects, work items and their history."""

    MAX_ITERATIONS = 10
    MAX_WORK_ITEMS_PER_PROJECT = 200

    def __init__(self, client: PlaneClient, cache: CacheService,
                 executor: Optional[RequestExecutor] = None,
                 max_iterations: Optional[int] = None,
                 max_work_items_per_project: Optional[int] = None):
        self.client = client
        self.cache = cache
        self.executor = executor or RequestExecutor()
        self.max_iterations = max_iterations or self.MAX_ITERATIONS
        self.max_work_items_per_project = (
            max_work_items_per_project or self.MAX_WORK_ITEMS_PER_PROJECT
        )

    def _get(self, endpoint: str, params: Optional[dict] = None, context: str = ""):
        return self.executor.execute(
            lambda: self.client._request(endpoint, params, context),
            context
        )

    def _paginate(self, endpoint: str, params: Optional[dict] = None,
                  context: str = "", limit: Optional[int] = None) -> list:
        """Collect every page of a list endpoint.

        Raises PaginationExhausted (carrying the partial list) when the
        upstream keeps handing out cursors past ``max_iterations`` pages.
        """
        items = []
        cursor = None
        iteration = 0

        while True:
            if iteration >= self.max_iterations:
                raise PaginationExhausted(
                    f"{context} hit max iterations ({self.max_iterations})",
                    items,
                    context=context
                )
            iteration += 1

            page_params = dict(params or {})
            if cursor:
                page_params["cursor"] = cursor

            results, cursor = normalize_page(self._get(endpoint, page_params, context))
            if limit is not None:
                results = results[:limit - len(items)]
            items.extend(results)

            if not cursor or (limit is not None and len(items) >= limit):
                break

        logger.info(f"{context}: fetched {len(items)} items in {iteration} page(s)")
        return items

    def _fetch_list(self, endpoint: str, params: Optional[dict] = None,
                    context: str = "", limit: Optional[int] = None) -> list:
        try:
            return self._paginate(endpoint, params, context, limit)
        except PaginationExhausted as e:
            logger.warning(f"{e}; returning {len(e.items)} items gathered so far")
            return e.items

    def _project_path(self, project_id: str, suffix: str = "") -> str:
        return self.client.workspace_path(f"/projects/{project_id}{suffix}")

    def _work_item_path(self, project_id: str, work_item_id: str, suffix: str) -> str:
        return self._project_path(project_id, f"/work-items/{work_item_id}{suffix}")

    # Projects

    def fetch_projects(self) -> list:
        return self._fetch_list(
            self.client.workspace_path("/projects/"), context="fetchProjects"
        )

    def get_projects(self) -> list:
        return self.cache.projects.get_or_fetch("all_projects", self.fetch_projects)

    # Work items

    def fetch_work_items(self, project_id: str) -> list:
        return self._fetch_list(
            self._project_path(project_id, "/work-items/"),
            params={"order_by": "-updated_at", "expand": "assignees,state"},
            context=f"fetchWorkItems({project_id})",
            limit=self.max_work_items_per_project
        )

    def get_work_items(self, project_id: str) -> list:
        return self.cache.work_items.get_or_fetch(
            f"project:{project_id}", lambda: self.fetch_work_items(project_id)
        )

    # Per-item history

    def fetch_activities(self, project_id: str, work_item_id: str) -> list:
        return self._fetch_list(
            self._work_item_path(project_id, work_item_id, "/activities/"),
            context=f"activities({work_item_id})"
        )

    def get_activities(self, project_id: str, work_item_id: str) -> list:
        return self.cache.activities.get_or_fetch(
            f"item:{work_item_id}",
            lambda: self.fetch_activities(project_id, work_item_id)
        )

    def fetch_comments(self, project_id: str, work_item_id: str) -> list:
        return self._fetch_list(
            self._work_item_path(project_id, work_item_id, "/comments/"),
            context=f"comments({work_item_id})"
        )

    def get_comments(self, project_id: str, work_item_id: str) -> list:
        return self.cache.comments.get_or_fetch(
            f"comments:{work_item_id}",
            lambda: self.fetch_comments(project_id, work_item_id)
        )

    def fetch_subitems(self, project_id: str, work_item_id: str) -> list:
        return self._fetch_list(
            self._work_item_path(project_id, work_item_id, "/sub-issues/"),
            context=f"subitems({work_item_id})"
        )

    def get_subitems(self, project_id: str, work_item_id: str) -> list:
        return self.cache.subitems.get_or_fetch(
            f"subitems:{work_item_id}",
            lambda: self.fetch_subitems(project_id, work_item_id)
        )

    # Cycles

    def fetch_cycles(self, project_id: str) -> list:
        """Fetch cycles for a project with their completion counters."""
        try:
            cycles = self._fetch_list(
                self._project_path(project_id, "/cycles/"),
                context=f"fetchCycles({project_id})"
            )
        except AccessDeniedError:
            logger.warning(f"No access to cycles for project {project_id}")
            return []

        now = datetime.now(timezone.utc)
        normalized = []
        for cycle in cycles:
            start = parse_timestamp(cycle.get("start_date"))
            end = parse_timestamp(cycle.get("end_date"))
            normalized.append({
                "id": cycle.get("id"),
                "name": cycle.get("name"),
                "startDate": cycle.get("start_date"),
                "endDate": cycle.get("end_date"),
                "totalIssues": cycle.get("total_issues") or 0,
                "completedIssues": cycle.get("completed_issues") or 0,
                "cancelledIssues": cycle.get("cancelled_issues") or 0,
                "pendingIssues": cycle.get("pending_issues") or 0,
                "progress": cycle.get("progress") or 0,
                "isActive": bool(cycle.get("is_active")),
                "isCurrent": bool(start and end and start <= now <= end),
            })
        return normalized

    def get_cycles(self, project_id: str) -> list:
        return self.cache.cycles.get_or_fetch(
            f"cycles:{project_id}", lambda: self.fetch_cycles(project_id)
        )

    # Members and users

    def fetch_project_members(self, project_id: str) -> list:
        return self._fetch_list(
            self._project_path(project_id, "/members/"),
            context=f"projectMembers({project_id})"
        )

    def get_project_members(self, project_id: str) -> list:
        return self.cache.members.get_or_fetch(
            f"project:{project_id}", lambda: self.fetch_project_members(project_id)
        )

    def fetch_workspace_members(self) -> list:
        return self._fetch_list(
            self.client.workspace_path("/members/"),
            context="getWorkspaceMembers"
        )

    def get_workspace_members(self) -> list:
        return self.cache.members.get_or_fetch("workspace", self.fetch_workspace_members)

    def _build_user_table(self) -> dict:
        """Empty when the member list cannot be loaded.

        The empty table is cached like any other, so a failing members
        endpoint is asked once per session rather than once per user id.
        """
        try:
            members = self.get_workspace_members()
        except PlaneApiError as e:
            logger.warning(f"Failed to preload users, names fall back to ids: {e}")
            return {}

        table = {}
        for member in members:
            name = member_display_name(member)
            if not name:
                continue
            for user_id in member_ids(member):
                table[user_id] = name
        logger.info(f"Preloaded {len(table)} user ids")
        return table

    def preload_all_users(self) -> dict:
        """Load the id -> display name table once per session.

        The only identity endpoint returns the whole member list, so one
        bulk load replaces a request per user id.
        """
        return self.cache.users.get_or_fetch(USER_TABLE_KEY, self._build_user_table)

    def resolve_user_name(self, user_id: Optional[str]) -> Optional[str]:
        """Display name for ``user_id``, falling back to the id itself."""
        if not user_id:
            return user_id
        try:
            table = self.preload_all_users()
        except PlaneApiError as e:
            logger.warning(f"Failed to load users to resolve {user_id}: {e}")
            return user_id
        return table.get(user_id, user_id)

    def get_people(self) -> list:
        """Workspace members as ``{"name", "id"}`` for autocomplete lists."""
        people = []
        for member in self.get_workspace_members():
            name = member_display_name(member)
            ids = member_ids(member)
            if not name or not ids:
                continue
            user_data = member.get("member") or member.get("user")
            user_id = user_data.get("id") if isinstance(user_data, dict) else ids[0]
            people.append({"name": name, "id": user_id or ids[0]})
        return people

    # Workspace

    def get_workspace_details(self) -> dict:
        slug = self.client.workspace_slug
        try:
            return self._get(self.client.workspace_path("/"), context="getWorkspaceDetails")
        except PlaneApiError as e:
            logger.error(f"Failed to fetch workspace details: {e}")
            return {"name": slug, "slug": slug}

"""Shared fixtures for Plane digest tests."""

import os
import sys
import threading
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.settings import PlaneSettings
from services.plane_cache import CacheService
from services.plane_client import PlaneClient
from services.plane_fetchers import PlaneDataFetcher
from services.plane_request import RequestExecutor

WORKSPACE = "acme"
PROJECT_ID = "proj-1"
WS = f"/workspaces/{WORKSPACE}"
PROJECT_PATH = f"{WS}/projects/{PROJECT_ID}"


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakePlaneApi:
    """Stands in for PlaneClient._request, answering from a path -> payload map.

    A payload that is an exception instance is raised instead of returned.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, endpoint, params=None, context=""):
        with self._lock:
            self.calls.append((endpoint, dict(params or {})))
        if endpoint not in self.routes:
            return []
        payload = self.routes[endpoint]
        if isinstance(payload, Exception):
            raise payload
        if callable(payload):
            return payload(params or {})
        return payload

    def count(self, endpoint):
        with self._lock:
            return sum(1 for path, _ in self.calls if path == endpoint)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def plane_settings():
    """Settings pointing at a test workspace."""
    return PlaneSettings(
        base_url="https://plane.test/api/v1",
        api_key="test-key",
        workspace_slug=WORKSPACE
    )


@pytest.fixture
def sample_project():
    return {"id": PROJECT_ID, "name": "Website", "identifier": "WEB"}


@pytest.fixture
def sample_members():
    """Project/workspace member entries in the shapes Plane returns."""
    return [
        {
            "id": "m-1",
            "member": {"id": "user-1", "display_name": "shruti.dhasmana", "email": "shruti@example.com"},
        },
        {
            "id": "m-2",
            "member": {"id": "user-2", "display_name": "Ravi Kumar"},
        },
        {
            "id": "m-3",
            "member": {"id": "user-3", "display_name": "Suhas Admin"},
        },
    ]


@pytest.fixture
def sample_work_items():
    return [
        {
            "id": "wi-1",
            "sequence_id": 1,
            "name": "Build login page",
            "project_id": PROJECT_ID,
            "state": {"name": "In Progress"},
            "priority": "high",
            "assignees": [{"id": "user-1", "display_name": "shruti.dhasmana"}],
            "created_by": "user-2",
            "created_at": "2024-10-01T09:00:00Z",
            "updated_at": "2024-10-31T12:00:00Z",
        },
        {
            "id": "wi-2",
            "sequence_id": 2,
            "name": "Week 16 release notes",
            "project_id": PROJECT_ID,
            "state": {"name": "Todo"},
            "priority": "low",
            "assignees": [{"id": "user-1", "display_name": "shruti.dhasmana"}],
            "created_by": "user-1",
            "created_at": "2024-10-31T08:00:00Z",
            "updated_at": "2024-10-31T08:00:00Z",
        },
        {
            "id": "wi-3",
            "sequence_id": 3,
            "name": "Old task",
            "project_id": PROJECT_ID,
            "state": {"name": "Done"},
            "assignees": [{"id": "user-2", "display_name": "Ravi Kumar"}],
            "created_at": "2024-09-01T08:00:00Z",
            "updated_at": "2024-09-02T08:00:00Z",
        },
    ]


@pytest.fixture
def sample_activities():
    """History of wi-1: moved to Done by shruti on the day."""
    return [
        {
            "id": "act-1",
            "field": "state",
            "old_value": "In Progress",
            "new_value": "Done",
            "verb": "updated",
            "actor": "user-1",
            "created_at": "2024-10-31T11:00:00Z",
        },
        {
            "id": "act-2",
            "field": "blocked_by",
            "new_value": "WEB-7",
            "actor": "user-1",
            "created_at": "2024-10-30T11:00:00Z",
        },
    ]


@pytest.fixture
def sample_comments():
    return [
        {
            "id": "c-1",
            "comment_html": "<p>Pushed the <b>fix</b></p>",
            "actor": "user-2",
            "created_at": "2024-10-31T10:00:00Z",
        },
    ]


@pytest.fixture
def sample_cycles():
    return [
        {
            "id": "cy-1",
            "name": "Week 16",
            "start_date": "2024-10-28T00:00:00Z",
            "end_date": "2024-11-03T23:59:59Z",
            "total_issues": 7,
            "completed_issues": 3,
            "is_active": True,
        },
        {
            "id": "cy-2",
            "name": "Week 15",
            "start_date": "2024-10-21T00:00:00Z",
            "end_date": "2024-10-27T23:59:59Z",
            "total_issues": 4,
            "completed_issues": 4,
        },
    ]


@pytest.fixture
def plane_routes(sample_project, sample_members, sample_work_items,
                 sample_activities, sample_comments, sample_cycles):
    """Upstream payloads for one workspace with one project."""
    return {
        f"{WS}/projects/": {"results": [sample_project], "next_cursor": None},
        f"{WS}/members/": sample_members,
        f"{PROJECT_PATH}/members/": sample_members,
        f"{PROJECT_PATH}/work-items/": {"results": sample_work_items},
        f"{PROJECT_PATH}/work-items/wi-1/activities/": {"results": sample_activities},
        f"{PROJECT_PATH}/work-items/wi-1/comments/": sample_comments,
        f"{PROJECT_PATH}/cycles/": sample_cycles,
    }


@pytest.fixture
def fake_api(plane_routes):
    return FakePlaneApi(plane_routes)


@pytest.fixture
def cache_service(fake_clock):
    return CacheService(clock=fake_clock)


@pytest.fixture
def plane_client():
    return PlaneClient("https://plane.test/api/v1", "test-key", WORKSPACE)


@pytest.fixture
def fetcher(plane_client, cache_service, fake_api):
    """PlaneDataFetcher whose upstream calls are answered by ``fake_api``."""
    with patch.object(plane_client, "_request", side_effect=fake_api):
        yield PlaneDataFetcher(
            plane_client,
            cache_service,
            RequestExecutor(sleep=lambda seconds: None)
        )


@pytest.fixture
def app(plane_settings):
    """Create Flask test app."""
    from app import create_app
    app = create_app(plane_settings)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()

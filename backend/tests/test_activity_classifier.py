"""Tests for state classification and per-person aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from services.activity_classifier import (
    build_person_summary,
    classify,
    classify_state,
    matches_state_category,
)
from services.activity_records import Activity, Comment, Subitem, WorkItemSnapshot

T0 = datetime(2024, 10, 31, 9, 0, tzinfo=timezone.utc)


def activity(work_item="WEB-1", new_value="Done", time=T0, field="state", **kwargs):
    return Activity(
        work_item=work_item,
        work_item_name=kwargs.pop("name", f"{work_item} name"),
        project="WEB",
        actor="shruti.dhasmana",
        time=time,
        field=field,
        new_value=new_value,
        **kwargs
    )


def comment(work_item="WEB-1", text="Looks good", time=T0):
    return Comment(
        work_item=work_item,
        work_item_name=f"{work_item} name",
        project="WEB",
        actor="shruti.dhasmana",
        time=time,
        comment=text,
    )


def snapshot(work_item="WEB-1", state="In Progress", time=T0):
    return WorkItemSnapshot(
        work_item=work_item,
        work_item_name=f"{work_item} name",
        project="WEB",
        actor=None,
        time=time,
        state=state,
    )


def subitem(work_item="WEB-11", state="Done", time=T0):
    return Subitem(
        work_item=work_item,
        work_item_name=f"{work_item} name",
        project="WEB",
        actor=None,
        time=time,
        parent_work_item="WEB-1",
        state=state,
    )


def ids(refs):
    return [r["id"] for r in refs]


class TestClassifyState:
    """Test the state pattern table."""

    @pytest.mark.parametrize("state, expected", [
        ("In Review", "inProgress"),
        ("Closed", "completed"),
        ("Done", "completed"),
        ("Resolved", "completed"),
        ("Blocked by vendor", "blocked"),
        ("On Hold", "blocked"),
        ("In QA", "inProgress"),
        ("Todo", "backlog"),
        ("Triage", "backlog"),
        ("", "backlog"),
        (None, "backlog"),
    ])
    def test_categories(self, state, expected):
        assert classify_state(state) == expected

    def test_completed_checked_before_blocked(self):
        """First matching category wins."""
        assert classify_state("Done (was blocked)") == "completed"

    def test_matches_state_category_is_case_insensitive(self):
        assert matches_state_category("IN PROGRESS", "inProgress")
        assert not matches_state_category(None, "completed")


class TestClassify:
    """Test bucketing of records."""

    def test_latest_record_wins(self):
        """Todo at T1 then Done at T2: completed, not todo."""
        records = [
            activity(new_value="Done", time=T0 + timedelta(hours=2)),
            activity(new_value="Todo", time=T0 + timedelta(hours=1)),
        ]
        result = classify(records)
        assert ids(result["completed"]) == ["WEB-1"]
        assert result["todo"] == []
        assert result["inProgress"] == []

    def test_latest_wins_regardless_of_input_order(self):
        records = [
            activity(new_value="Done", time=T0),
            activity(new_value="In Progress", time=T0 + timedelta(minutes=5)),
        ]
        result = classify(records)
        assert result["inProgress"] == [{"id": "WEB-1", "name": "WEB-1 name", "state": "In Progress"}]
        assert result["completed"] == []

    def test_tie_prefers_activity_over_snapshot(self):
        records = [
            activity(new_value="Done", time=T0),
            snapshot(state="In Progress", time=T0),
        ]
        assert ids(classify(records)["completed"]) == ["WEB-1"]

    def test_tie_between_equal_records_uses_input_order(self):
        records = [
            activity(new_value="Done", time=T0),
            activity(new_value="In Review", time=T0),
        ]
        assert ids(classify(records)["inProgress"]) == ["WEB-1"]

    def test_blocked_goes_to_in_progress_as_blocked(self):
        result = classify([activity(new_value="Blocked")])
        assert result["inProgress"] == [{"id": "WEB-1", "name": "WEB-1 name", "state": "Blocked"}]

    def test_backlog_states_go_to_todo(self):
        result = classify([snapshot(state="Triage")])
        assert result["todo"] == [{"id": "WEB-1", "name": "WEB-1 name", "state": "Triage"}]

    def test_each_item_in_exactly_one_bucket(self):
        records = [
            activity("WEB-1", "Done"),
            comment("WEB-1"),
            activity("WEB-2", "In Progress"),
            snapshot("WEB-3", "Backlog"),
            comment("WEB-4"),
            subitem("WEB-11", "Done"),
        ]
        result = classify(records)
        all_ids = ids(result["completed"]) + ids(result["inProgress"]) + ids(result["todo"])
        assert sorted(all_ids) == ["WEB-1", "WEB-11", "WEB-2", "WEB-3", "WEB-4"]

    def test_assignment_only_activity_does_not_set_state(self):
        records = [
            activity(new_value="Done", time=T0),
            activity(field="assignees", new_value="Ravi Kumar", time=T0 + timedelta(hours=1)),
        ]
        assert ids(classify(records)["completed"]) == ["WEB-1"]

    def test_assignment_only_item_is_still_listed(self):
        result = classify([activity(field="assignee", new_value="Ravi Kumar")])
        assert result["inProgress"][0]["state"] == "In Progress (Updated)"

    def test_non_state_field_does_not_override_state(self):
        records = [
            activity(new_value="Done", time=T0),
            activity(field="priority", new_value="urgent", time=T0 + timedelta(hours=1)),
        ]
        assert ids(classify(records)["completed"]) == ["WEB-1"]

    def test_comment_only_item_is_in_progress(self):
        result = classify([comment("WEB-4", "Started investigating")])
        assert result["inProgress"] == [{
            "id": "WEB-4",
            "name": "WEB-4 name",
            "state": "In Progress (Updated via comment)",
            "hasComments": True,
        }]

    def test_comment_on_completed_item_keeps_it_completed(self):
        result = classify([activity(new_value="Done"), comment(text="Shipped")])
        assert ids(result["completed"]) == ["WEB-1"]
        assert result["comments"][0]["comment"] == "Shipped"

    def test_long_comments_truncated(self):
        text = "x" * 250
        result = classify([comment(text=text)])
        assert result["comments"][0]["comment"] == "x" * 200 + "..."

    def test_custom_comment_limit(self):
        result = classify([comment(text="abcdefghij")], comment_limit=4)
        assert result["comments"][0]["comment"] == "abcd..."

    def test_blank_comment_ignored(self):
        result = classify([comment(text="   ")])
        assert result["comments"] == []

    def test_relationships_attached(self):
        records = [activity(relationships={"blocked_by": "WEB-7"})]
        result = classify(records)
        assert result["relationships"] == {"WEB-1": {"blocked_by": "WEB-7"}}
        assert result["completed"][0]["relationships"] == {"blocked_by": "WEB-7"}

    def test_empty_input(self):
        result = classify([])
        assert result == {
            "completed": [],
            "inProgress": [],
            "todo": [],
            "comments": [],
            "relationships": {},
        }


class TestBuildPersonSummary:
    """Test PersonSummary construction."""

    def test_summary_fields(self):
        summary = build_person_summary("Shruti", [
            activity("WEB-1", "Done"),
            activity("WEB-2", "In Review"),
            comment("WEB-2", "Ready for review"),
        ])

        assert summary.has_activity
        data = summary.to_dict()
        assert data["name"] == "Shruti"
        assert ids(data["completed"]) == ["WEB-1"]
        assert data["inProgress"][0]["state"] == "In Review"
        assert data["comments"][0]["id"] == "WEB-2"

    def test_no_records(self):
        summary = build_person_summary("Ravi", [])
        assert not summary.has_activity
        assert summary.to_dict()["completed"] == []

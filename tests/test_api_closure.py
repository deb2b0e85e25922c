"""
API tests for the closure blueprint.

Drives the closure dialog over HTTP: open a session, walk the steps,
postpone or submit, resume a pending evaluation, reactivate.
"""

import pytest

from portfolio.models import db
from portfolio.models.closure import ProjectEvaluation, ProjectReview
from portfolio.models.project import Project, ProjectRole

BASE = "/api/v1"
PM = {"X-User": "pm-1"}
ADMIN = {"X-User": "admin-1"}
MEMBER = {"X-User": "member-1"}

REVIEW = {"weather": "sunny", "progress": "better", "completion": 100, "comment": "Delivered"}


def _open(client, project_id, headers=PM):
    res = client.post(f"{BASE}/projects/{project_id}/closure/sessions", headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _to_method_evaluation(client, project_id):
    sid = _open(client, project_id)["session_id"]
    assert client.post(f"{BASE}/closure/sessions/{sid}/next", headers=PM).status_code == 200
    res = client.post(f"{BASE}/closure/sessions/{sid}/final-review", json=REVIEW, headers=PM)
    assert res.status_code == 200
    return sid


def _project(project_id):
    db.session.expire_all()
    return db.session.get(Project, project_id)


# ═════════════════════════════════════════════════════════════════════════════
# Project-level endpoints
# ═════════════════════════════════════════════════════════════════════════════


class TestProjectClosureEndpoints:
    def test_get_closure(self, client, project):
        res = client.get(f"{BASE}/projects/{project.id}/closure", headers=PM)
        assert res.status_code == 200
        body = res.get_json()
        assert body["lifecycle_status"] == "in_progress"
        assert body["available_workflow"] == "close"

    def test_get_closure_unknown_project(self, client):
        res = client.get(f"{BASE}/projects/999/closure", headers=PM)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_reactivate(self, client, closed_project):
        res = client.post(f"{BASE}/projects/{closed_project.id}/reactivate", headers=PM)
        assert res.status_code == 200
        assert res.get_json()["lifecycle_status"] == "in_progress"

    def test_reactivate_requires_permission(self, client, closed_project):
        res = client.post(f"{BASE}/projects/{closed_project.id}/reactivate", headers=MEMBER)
        assert res.status_code == 403
        assert _project(closed_project.id).lifecycle_status == "completed"

    def test_reactivate_active_project_conflicts(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/reactivate", headers=PM)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_existing_data_roundtrip(self, client, pending_project):
        client.post(f"{BASE}/projects/{pending_project.id}/reactivate", headers=PM)
        res = client.get(f"{BASE}/projects/{pending_project.id}/closure/existing-data", headers=PM)
        assert res.get_json()["has_final_review"] is True

        res = client.delete(f"{BASE}/projects/{pending_project.id}/closure/existing-data", headers=PM)
        assert res.status_code == 200
        assert res.get_json()["deleted_final_reviews"] == 1

    def test_evaluation_not_found(self, client, project):
        res = client.get(f"{BASE}/projects/{project.id}/evaluation", headers=PM)
        assert res.status_code == 404

    def test_list_evaluations(self, client, closed_project):
        db.session.add(ProjectEvaluation(project_id=closed_project.id, what_worked="Kanban board"))
        db.session.commit()
        res = client.get(f"{BASE}/evaluations?search=kanban&closed_from=2026-01-01", headers=ADMIN)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["project"]["title"] == "Intranet redesign"


class TestReadAccess:
    @pytest.mark.parametrize("suffix", ["closure", "closure/existing-data", "evaluation"])
    def test_project_reads_require_actor(self, client, project, suffix):
        res = client.get(f"{BASE}/projects/{project.id}/{suffix}")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    @pytest.mark.parametrize("suffix", ["closure", "closure/existing-data", "evaluation"])
    def test_project_reads_refuse_outsider(self, client, pending_project, suffix):
        res = client.get(f"{BASE}/projects/{pending_project.id}/{suffix}", headers={"X-User": "stranger"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_member_reads_project_closure(self, client, pending_project):
        res = client.get(f"{BASE}/projects/{pending_project.id}/closure", headers=MEMBER)
        assert res.status_code == 200
        assert res.get_json()["available_workflow"] == "complete_evaluation"

    def test_list_evaluations_requires_actor(self, client):
        res = client.get(f"{BASE}/evaluations")
        assert res.status_code == 401

    @pytest.mark.parametrize("headers", [PM, MEMBER, {"X-User": "stranger"}])
    def test_list_evaluations_refuses_project_roles(self, client, project, headers):
        res = client.get(f"{BASE}/evaluations", headers=headers)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_quality_manager_lists_evaluations(self, client, closed_project):
        db.session.add(ProjectRole(project_id=closed_project.id, user_id="qm-1", role="quality_manager"))
        db.session.add(ProjectEvaluation(project_id=closed_project.id, what_worked="Pairing"))
        db.session.commit()
        res = client.get(f"{BASE}/evaluations", headers={"X-User": "qm-1"})
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

    @pytest.mark.parametrize("query", ["closed_from=not-a-date", "closed_to=2026-13-40"])
    def test_list_evaluations_rejects_bad_dates(self, client, project, query):
        res = client.get(f"{BASE}/evaluations?{query}", headers=ADMIN)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert query.split("=")[0] in body["details"]


# ═════════════════════════════════════════════════════════════════════════════
# Opening sessions
# ═════════════════════════════════════════════════════════════════════════════


class TestOpenSession:
    def test_open_ordinary(self, client, project):
        body = _open(client, project.id)
        assert body["state"]["current_step"] == "intro"
        assert body["state"]["resume_mode"] is False
        assert body["progress"][0]["status"] == "current"
        assert body["existing_data"]["has_final_review"] is False

    def test_open_requires_actor(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/closure/sessions")
        assert res.status_code == 401

    def test_member_cannot_close(self, client, project):
        res = client.post(f"{BASE}/projects/{project.id}/closure/sessions", headers=MEMBER)
        assert res.status_code == 403

    def test_open_pending_project_resumes(self, client, pending_project):
        body = _open(client, pending_project.id, headers=ADMIN)
        assert body["state"]["resume_mode"] is True
        assert body["state"]["current_step"] == "method_evaluation"
        assert "existing_data" not in body

    def test_closed_project_conflicts(self, client, closed_project):
        res = client.post(f"{BASE}/projects/{closed_project.id}/closure/sessions", headers=PM)
        assert res.status_code == 409

    def test_second_actor_conflicts(self, client, project):
        _open(client, project.id)
        res = client.post(f"{BASE}/projects/{project.id}/closure/sessions", headers=ADMIN)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_session_bound_to_actor(self, client, project):
        sid = _open(client, project.id)["session_id"]
        res = client.get(f"{BASE}/closure/sessions/{sid}", headers=ADMIN)
        assert res.status_code == 403

    def test_unknown_session(self, client):
        res = client.get(f"{BASE}/closure/sessions/nope", headers=PM)
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflow:
    def test_full_closure(self, client, project):
        sid = _to_method_evaluation(client, project.id)
        res = client.post(f"{BASE}/closure/sessions/{sid}/evaluation",
                          json={"what_worked": "Weekly demos"}, headers=PM)
        assert res.get_json()["state"]["current_step"] == "confirmation"

        res = client.post(f"{BASE}/closure/sessions/{sid}/submit", headers=PM)
        assert res.status_code == 200
        body = res.get_json()
        assert body["result"]["lifecycle_status"] == "completed"
        assert body["result"]["closure_status"] is None
        assert body["state"]["closed"] is True

        proj = _project(project.id)
        assert proj.lifecycle_status == "completed"
        assert proj.closed_by == "pm-1"
        assert ProjectEvaluation.query.filter_by(project_id=project.id).count() == 1

        # session is gone once the closure is done
        assert client.get(f"{BASE}/closure/sessions/{sid}", headers=PM).status_code == 404

    def test_postpone(self, client, project):
        sid = _to_method_evaluation(client, project.id)
        res = client.post(f"{BASE}/closure/sessions/{sid}/postpone", headers=PM)
        assert res.status_code == 200
        assert res.get_json()["result"]["closure_status"] == "pending_evaluation"
        assert ProjectEvaluation.query.filter_by(project_id=project.id).count() == 0

    def test_invalid_final_review(self, client, project):
        sid = _open(client, project.id)["session_id"]
        client.post(f"{BASE}/closure/sessions/{sid}/next", headers=PM)
        res = client.post(f"{BASE}/closure/sessions/{sid}/final-review",
                          json={**REVIEW, "completion": 150}, headers=PM)
        assert res.status_code == 422
        assert "completion" in res.get_json()["details"]

        res = client.get(f"{BASE}/closure/sessions/{sid}", headers=PM)
        assert res.get_json()["state"]["current_step"] == "final_review"

    def test_jump_to_confirmation_without_review(self, client, project):
        sid = _open(client, project.id)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/step", json={"step": "confirmation"}, headers=PM)
        assert res.status_code == 409

    def test_jump_requires_step(self, client, project):
        sid = _open(client, project.id)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/step", json={}, headers=PM)
        assert res.status_code == 400

    def test_submit_outside_confirmation(self, client, project):
        sid = _to_method_evaluation(client, project.id)
        res = client.post(f"{BASE}/closure/sessions/{sid}/submit", headers=PM)
        assert res.status_code == 409
        assert _project(project.id).lifecycle_status == "in_progress"

    def test_reset(self, client, project):
        sid = _to_method_evaluation(client, project.id)
        res = client.post(f"{BASE}/closure/sessions/{sid}/reset", headers=PM)
        state = res.get_json()["state"]
        assert state["current_step"] == "intro"
        assert state["final_review_data"] is None

    def test_close_dialog(self, client, project):
        sid = _open(client, project.id)["session_id"]
        assert client.delete(f"{BASE}/closure/sessions/{sid}", headers=PM).status_code == 204
        # another actor may now open it
        _open(client, project.id, headers=ADMIN)

    def test_concurrent_close_keeps_state(self, client, project):
        sid = _to_method_evaluation(client, project.id)
        proj = _project(project.id)
        proj.lifecycle_status = "completed"
        proj.closed_by = "someone-else"
        db.session.commit()

        res = client.post(f"{BASE}/closure/sessions/{sid}/postpone", headers=PM)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_PRECONDITION_FAILED"
        assert body["details"]["state"]["final_review_data"]["completion"] == 100
        assert ProjectReview.query.filter_by(project_id=project.id, is_final_review=True).count() == 0

        # session survives the failure
        assert client.get(f"{BASE}/closure/sessions/{sid}", headers=PM).status_code == 200


class TestResumeWorkflow:
    def test_complete_pending_evaluation(self, client, pending_project):
        sid = _open(client, pending_project.id, headers=ADMIN)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/submit",
                          json={"what_worked": "Good communication"}, headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["result"]["action"] == "complete_evaluation"

        proj = _project(pending_project.id)
        assert proj.closure_status is None
        assert proj.closed_by == "pm-1"

        res = client.get(f"{BASE}/projects/{pending_project.id}/evaluation", headers=MEMBER)
        body = res.get_json()
        assert body["evaluation"]["what_worked"] == "Good communication"
        assert body["final_review"]["completion"] == 80

    def test_back_from_method_evaluation_closes_dialog(self, client, pending_project):
        sid = _open(client, pending_project.id)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/previous", headers=PM)
        assert res.status_code == 200
        assert res.get_json()["state"]["closed"] is True
        assert client.get(f"{BASE}/closure/sessions/{sid}", headers=PM).status_code == 404

    @pytest.mark.parametrize("step", ["intro", "final_review"])
    def test_final_review_not_reachable(self, client, pending_project, step):
        sid = _open(client, pending_project.id)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/step", json={"step": step}, headers=PM)
        assert res.status_code == 409

    def test_postpone_refused(self, client, pending_project):
        sid = _open(client, pending_project.id)["session_id"]
        res = client.post(f"{BASE}/closure/sessions/{sid}/postpone", headers=PM)
        assert res.status_code == 409


def test_health_reports_open_sessions(client, project):
    _open(client, project.id)
    res = client.get(f"{BASE}/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["closure_sessions"]["open"] == 1

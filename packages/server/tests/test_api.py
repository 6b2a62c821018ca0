"""
Integration tests for the v1 HTTP surface.

Tests cover:
- Acting user resolution from X-User-Id
- The {data, warnings} response envelope
- The {error: {...}} envelope for domain errors
- Notification failures surfacing as warnings after commit
"""

from __future__ import annotations

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.database import get_session
from app.core.identity import get_user_directory
from app.core.notifications import get_notifier
from app.main import app

from conftest import RecordingNotifier

HEADERS = {"X-User-Id": "1"}


@pytest.fixture
def notifier():
    return RecordingNotifier(fail_on={"task.completed"})


@pytest.fixture
async def client(session_factory, directory, notifier):
    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_user_directory] = lambda: directory
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create(client, **body) -> dict:
    response = await client.post("/api/v1/tasks/", json={"title": "Task", **body}, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_header_rejected(self, client):
        response = await client.get("/api/v1/tasks/")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, client):
        response = await client.get("/api/v1/tasks/", headers={"X-User-Id": "404"})
        assert response.status_code == 401


class TestTaskEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        created = await _create(client, title="Book venue", assigned_user_id=5)
        assert created["status"] == "pending"
        assert created["created_by"] == 1
        assert created["department_id"] == 10
        assert created["assignee_ids"] == [5]

        response = await client.get(f"/api/v1/tasks/{created['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["data"]["title"] == "Book venue"
        assert response.json()["warnings"] == []

    @pytest.mark.asyncio
    async def test_unknown_task_is_404_envelope(self, client):
        missing = uuid.uuid4()
        response = await client.get(f"/api/v1/tasks/{missing}", headers=HEADERS)
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "TASK_NOT_FOUND"
        assert error["context"]["task_id"] == str(missing)

    @pytest.mark.asyncio
    async def test_invalid_transition_envelope(self, client):
        task = await _create(client, status="completed")
        response = await client.post(
            f"/api/v1/tasks/{task['id']}/transition", json={"to_status": "review"}, headers=HEADERS
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["context"]["attempted"] == "review"
        assert error["context"]["allowed"] == ["in_progress", "pending"]

    @pytest.mark.asyncio
    async def test_failed_notification_is_a_warning(self, client, notifier):
        task = await _create(client, assigned_user_id=5)
        response = await client.post(
            f"/api/v1/tasks/{task['id']}/transition", json={"to_status": "completed"}, headers=HEADERS
        )
        assert response.status_code == 200
        body = response.json()
        assert body["data"]["status"] == "completed"
        assert len(body["warnings"]) == 1
        assert "task.status_changed" in notifier.events()

        # The transition was committed despite the failed delivery.
        again = await client.get(f"/api/v1/tasks/{task['id']}", headers=HEADERS)
        assert again.json()["data"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_stale_version_is_409(self, client):
        task = await _create(client)
        response = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "Renamed", "expected_version": 9}, headers=HEADERS
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONCURRENT_MODIFICATION"

    @pytest.mark.asyncio
    async def test_subtask_move_and_tree(self, client):
        parent = await _create(client, title="Parent")
        response = await client.post(
            f"/api/v1/tasks/{parent['id']}/subtasks", json={"title": "Child"}, headers=HEADERS
        )
        assert response.status_code == 201
        child = response.json()["data"]

        response = await client.post(
            f"/api/v1/tasks/{parent['id']}/move", json={"new_parent_id": child["id"]}, headers=HEADERS
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CIRCULAR_REFERENCE"

        tree = (await client.get(f"/api/v1/tasks/{parent['id']}/tree", headers=HEADERS)).json()["data"]
        assert [c["title"] for c in tree["children"]] == ["Child"]

    @pytest.mark.asyncio
    async def test_dependencies(self, client):
        a = await _create(client, title="A")
        b = await _create(client, title="B")
        response = await client.post(
            f"/api/v1/tasks/{b['id']}/dependencies", json={"depends_on_task_id": a["id"]}, headers=HEADERS
        )
        assert response.status_code == 201

        response = await client.post(
            f"/api/v1/tasks/{a['id']}/dependencies", json={"depends_on_task_id": b["id"]}, headers=HEADERS
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CIRCULAR_DEPENDENCY"

        blockers = (await client.get(f"/api/v1/tasks/{b['id']}/blockers", headers=HEADERS)).json()["data"]
        assert [t["id"] for t in blockers] == [a["id"]]

        chain = (await client.get(f"/api/v1/tasks/{b['id']}/dependency-chain", headers=HEADERS)).json()["data"]
        assert [t["id"] for t in chain] == [a["id"]]

        response = await client.post(
            f"/api/v1/tasks/{b['id']}/transition", json={"to_status": "in_progress"}, headers=HEADERS
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["context"]["blocked_by"] == [a["id"]]

        affected = (
            await client.get(f"/api/v1/tasks/{a['id']}/affected", params={"status": "completed"}, headers=HEADERS)
        ).json()["data"]
        assert affected["dependents"] == [b["id"]]

        response = await client.delete(f"/api/v1/tasks/{b['id']}/dependencies/{a['id']}", headers=HEADERS)
        assert response.status_code == 200
        response = await client.delete(f"/api/v1/tasks/{b['id']}/dependencies/{a['id']}", headers=HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_assign_and_reassign(self, client):
        task = await _create(client)
        response = await client.post(
            f"/api/v1/tasks/{task['id']}/assign",
            json={"user_ids": [5, 7], "replace_existing": True},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["data"]["assigned_user_id"] == 5

        response = await client.post(
            f"/api/v1/tasks/{task['id']}/assign", json={"user_ids": [9]}, headers=HEADERS
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "UNASSIGNABLE_USER"

        response = await client.post(
            f"/api/v1/tasks/{task['id']}/reassign", json={"user_id": 8, "reason": "Cover"}, headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["data"]["assigned_user_id"] == 8

        rows = (await client.get(f"/api/v1/tasks/{task['id']}/assignments", headers=HEADERS)).json()["data"]
        assert sorted(r["user_id"] for r in rows) == [5, 7, 8]

    @pytest.mark.asyncio
    async def test_delete_then_history(self, client):
        task = await _create(client)
        response = await client.delete(f"/api/v1/tasks/{task['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=HEADERS)).status_code == 404

        history = (await client.get(f"/api/v1/tasks/{task['id']}/history", headers=HEADERS)).json()["data"]
        assert [h["action"] for h in history] == ["created", "deleted"]


class TestTemplateEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_instantiate(self, client):
        response = await client.post(
            "/api/v1/templates/",
            json={
                "name": "Stage build",
                "template_data": {
                    "tasks": [
                        {"id": "t1", "title": "Design {{venue}}"},
                        {"id": "t2", "title": "Build", "parent_id": "t1"},
                    ],
                    "dependencies": [
                        {"task_id": "t2", "depends_on_task_id": "t1"},
                        {"task_id": "t2", "depends_on_task_id": "missing"},
                    ],
                },
                "variables": {"venue": {"required": True}},
            },
            headers=HEADERS,
        )
        assert response.status_code == 201
        template = response.json()["data"]

        response = await client.post(
            f"/api/v1/templates/{template['id']}/instantiate", json={}, headers=HEADERS
        )
        assert response.status_code == 422
        assert response.json()["error"]["context"]["variable"] == "venue"

        response = await client.post(
            f"/api/v1/templates/{template['id']}/instantiate",
            json={"variables": {"venue": "Hall A"}},
            headers=HEADERS,
        )
        assert response.status_code == 201
        body = response.json()
        assert set(body["data"]["task_id_map"]) == {"t1", "t2"}
        assert len(body["data"]["dependency_ids"]) == 1
        assert body["data"]["skipped_dependencies"] == 1
        assert body["warnings"] == ["1 template dependencies were skipped"]

        design = (
            await client.get(f"/api/v1/tasks/{body['data']['task_id_map']['t1']}", headers=HEADERS)
        ).json()["data"]
        assert design["title"] == "Design Hall A"
        assert design["metadata"]["template_task_id"] == "t1"


class TestEnquiryEndpoints:
    @pytest.mark.asyncio
    async def test_create_seeds_workflow_and_projects_status(self, client):
        response = await client.post("/api/v1/enquiries/", json={"title": "Gala dinner"}, headers=HEADERS)
        assert response.status_code == 201
        enquiry = response.json()["data"]
        assert enquiry["status"] == "enquiry_logged"

        tasks = (
            await client.get(
                "/api/v1/tasks/",
                params={"taskable_type": "enquiry", "taskable_id": enquiry["id"]},
                headers=HEADERS,
            )
        ).json()["data"]
        assert len(tasks) == 14

        survey = next(t for t in tasks if t["task_type"] == "site-survey")
        await client.post(
            f"/api/v1/tasks/{survey['id']}/transition", json={"to_status": "completed"}, headers=HEADERS
        )

        status = (await client.get(f"/api/v1/enquiries/{enquiry['id']}/status", headers=HEADERS)).json()["data"]
        assert status["status"] == "site_survey_completed"

        reseed = await client.post(f"/api/v1/enquiries/{enquiry['id']}/workflow", headers=HEADERS)
        assert reseed.json()["data"]["created"] is False

    @pytest.mark.asyncio
    async def test_unknown_enquiry(self, client):
        response = await client.get("/api/v1/enquiries/999/status", headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENQUIRY_NOT_FOUND"

"""Tests for access control endpoints."""

from fastapi.testclient import TestClient

from tests.conftest import COURSE_ID, auth_headers


def enroll(client: TestClient, user_id: str) -> dict[str, str]:
    headers = auth_headers(user_id)
    client.post("/v1/enrollments", json={"course_id": COURSE_ID}, headers=headers)
    return headers


class TestAccessEndpoints:
    """Denials are reported in the body with status 200."""

    def test_anonymous_course_check(self, client: TestClient) -> None:
        response = client.get(f"/v1/access/courses/{COURSE_ID}")

        assert response.status_code == 200
        data = response.json()
        assert data["has_access"] is False
        assert data["reason"] == "not_authenticated"
        assert data["redirect_to"] == "/login"

    def test_not_enrolled(self, client: TestClient) -> None:
        response = client.get(
            f"/v1/access/courses/{COURSE_ID}/lessons/lesson-0", headers=auth_headers("u1")
        )

        data = response.json()
        assert data["reason"] == "not_enrolled"
        assert data["enrollment_required"] is True

    def test_locked_lesson(self, client: TestClient) -> None:
        headers = enroll(client, "u1")

        response = client.get(f"/v1/access/courses/{COURSE_ID}/lessons/lesson-1", headers=headers)

        data = response.json()
        assert data["has_access"] is False
        assert data["reason"] == "lesson_locked"
        assert data["blocking_lesson_id"] == "lesson-0"

    def test_accessible_lessons(self, client: TestClient) -> None:
        headers = enroll(client, "u1")

        response = client.get(f"/v1/access/courses/{COURSE_ID}/lessons", headers=headers)

        data = response.json()
        assert [lesson["id"] for lesson in data["lessons"]] == ["lesson-0"]
        assert data["total_count"] == 3
        assert data["accessible_count"] == 1

"""Tests for enrollment endpoints."""

from fastapi.testclient import TestClient

from tests.conftest import COURSE_ID, auth_headers


class TestEnrollEndpoint:
    """Tests for POST /v1/enrollments."""

    def test_requires_authentication(self, client: TestClient) -> None:
        response = client.post("/v1/enrollments", json={"course_id": COURSE_ID})

        assert response.status_code == 401
        assert response.json()["error"] is True

    def test_invalid_token(self, client: TestClient) -> None:
        response = client.post(
            "/v1/enrollments",
            json={"course_id": COURSE_ID},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401

    def test_enroll_then_duplicate(self, client: TestClient) -> None:
        headers = auth_headers("u1")

        created = client.post("/v1/enrollments", json={"course_id": COURSE_ID}, headers=headers)
        duplicate = client.post("/v1/enrollments", json={"course_id": COURSE_ID}, headers=headers)

        assert created.status_code == 201
        assert created.json()["outcome"] == "created"
        assert created.json()["enrollment"]["status"] == "active"
        assert duplicate.status_code == 200
        assert duplicate.json()["outcome"] == "duplicate_enrollment"

    def test_unknown_course(self, client: TestClient) -> None:
        response = client.post(
            "/v1/enrollments", json={"course_id": "nope"}, headers=auth_headers("u1")
        )

        assert response.status_code == 404

    def test_validation_error(self, client: TestClient) -> None:
        response = client.post("/v1/enrollments", json={}, headers=auth_headers("u1"))

        assert response.status_code == 422
        assert response.json()["message"] == "Validation error"


class TestListEnrollments:
    """Tests for GET /v1/enrollments."""

    def test_lists_own_enrollments(self, client: TestClient) -> None:
        client.post("/v1/enrollments", json={"course_id": COURSE_ID}, headers=auth_headers("u1"))

        mine = client.get("/v1/enrollments", headers=auth_headers("u1"))
        theirs = client.get("/v1/enrollments", headers=auth_headers("u2"))

        assert mine.json()["total"] == 1
        assert mine.json()["items"][0]["course_id"] == COURSE_ID
        assert theirs.json() == {"items": [], "total": 0}

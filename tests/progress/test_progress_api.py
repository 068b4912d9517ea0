"""Progress endpoint tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient

from academy.progress.cache import ProgressCache
from academy.progress.exceptions import ProgressReadError
from academy.progress.service import ProgressService
from tests.conftest import COURSE_ID, LESSON_IDS, NEXT_COURSE_ID, USER_ID, enroll

TEXT_1, INTERACTIVE, QUIZ, PRACTICAL, TEXT_5 = LESSON_IDS


@pytest_asyncio.fixture
async def enrolled_client(authed_client: AsyncClient, catalog) -> AsyncClient:
    await enroll(catalog)
    return authed_client


class TestCompleteLesson:
    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post(f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": COURSE_ID})
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_complete_text_lesson(self, enrolled_client: AsyncClient):
        response = await enrolled_client.post(
            f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": COURSE_ID}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["xp_earned"] == 10
        assert data["old_level"] == 1
        assert data["new_level"] == 1
        assert data["course_complete"] is False
        assert data["already_completed"] is False
        assert data["badges_earned"] == []

    @pytest.mark.asyncio
    async def test_repeat_completion(self, enrolled_client: AsyncClient):
        url = f"/api/v1/progress/lessons/{TEXT_1}/complete"
        await enrolled_client.post(url, json={"course_id": COURSE_ID})

        response = await enrolled_client.post(url, json={"course_id": COURSE_ID})

        assert response.status_code == 200
        assert response.json()["already_completed"] is True
        assert response.json()["xp_earned"] == 0

    @pytest.mark.asyncio
    async def test_failing_quiz_is_422(self, enrolled_client: AsyncClient):
        response = await enrolled_client.post(
            f"/api/v1/progress/lessons/{QUIZ}/complete", json={"course_id": COURSE_ID, "score": 55}
        )
        assert response.status_code == 422
        assert "70%" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_not_enrolled_is_409(self, authed_client: AsyncClient):
        response = await authed_client.post(
            f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": COURSE_ID}
        )
        assert response.status_code == 409
        assert "enroll" in response.json()["detail"].lower()

    @pytest.mark.asyncio
    async def test_unknown_lesson_is_404(self, enrolled_client: AsyncClient):
        response = await enrolled_client.post(
            "/api/v1/progress/lessons/lesson_999/complete", json={"course_id": COURSE_ID}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_wrong_course_is_400(self, enrolled_client: AsyncClient):
        response = await enrolled_client.post(
            f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": NEXT_COURSE_ID}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_score_out_of_range_is_validation_error(self, enrolled_client: AsyncClient):
        response = await enrolled_client.post(
            f"/api/v1/progress/lessons/{QUIZ}/complete", json={"course_id": COURSE_ID, "score": 140}
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_full_course(self, enrolled_client: AsyncClient):
        scores = {QUIZ: 100}
        for lesson_id in LESSON_IDS:
            body = {"course_id": COURSE_ID}
            if lesson_id in scores:
                body["score"] = scores[lesson_id]
            response = await enrolled_client.post(f"/api/v1/progress/lessons/{lesson_id}/complete", json=body)
            assert response.status_code == 200

        data = response.json()
        assert data["course_complete"] is True
        assert data["xp_earned"] == 110

        xp = await enrolled_client.get("/api/v1/users/me/xp")
        assert xp.json()["total_xp"] == 210


    @pytest.mark.asyncio
    async def test_cache_dropped_when_progress_reread_fails(self, enrolled_client: AsyncClient, monkeypatch):
        invalidate = AsyncMock()
        monkeypatch.setattr(ProgressCache, "invalidate_after_completion", invalidate)
        monkeypatch.setattr(
            ProgressService, "mark_lesson_complete", AsyncMock(side_effect=ProgressReadError())
        )

        response = await enrolled_client.post(
            f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": COURSE_ID}
        )

        assert response.status_code == 503
        assert response.json()["detail"] == "Failed to fetch updated progress"
        invalidate.assert_awaited_once_with(USER_ID, COURSE_ID, TEXT_1)


class TestProgressReads:
    @pytest.mark.asyncio
    async def test_course_progress(self, enrolled_client: AsyncClient):
        await enrolled_client.post(f"/api/v1/progress/lessons/{TEXT_1}/complete", json={"course_id": COURSE_ID})

        response = await enrolled_client.get(f"/api/v1/progress/courses/{COURSE_ID}")

        assert response.status_code == 200
        data = response.json()
        assert data["lessons_completed"] == 1
        assert data["total_lessons"] == 5
        assert data["progress_percentage"] == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_course_progress_not_enrolled(self, authed_client: AsyncClient):
        response = await authed_client.get(f"/api/v1/progress/courses/{COURSE_ID}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_lesson_completion(self, enrolled_client: AsyncClient):
        assert (await enrolled_client.get(f"/api/v1/progress/lessons/{TEXT_1}")).json() is None

        await enrolled_client.post(
            f"/api/v1/progress/lessons/{TEXT_1}/complete",
            json={"course_id": COURSE_ID, "time_spent_seconds": 95},
        )

        data = (await enrolled_client.get(f"/api/v1/progress/lessons/{TEXT_1}")).json()
        assert data["lesson_id"] == TEXT_1
        assert data["xp_earned"] == 10
        assert data["time_spent_seconds"] == 95

    @pytest.mark.asyncio
    async def test_completed_lessons(self, enrolled_client: AsyncClient):
        for lesson_id in (TEXT_1, INTERACTIVE):
            await enrolled_client.post(
                f"/api/v1/progress/lessons/{lesson_id}/complete", json={"course_id": COURSE_ID}
            )

        response = await enrolled_client.get(f"/api/v1/progress/courses/{COURSE_ID}/completed-lessons")

        assert response.json() == {"course_id": COURSE_ID, "lesson_ids": [TEXT_1, INTERACTIVE]}


class TestCurrentLesson:
    @pytest.mark.asyncio
    async def test_update_current_lesson(self, enrolled_client: AsyncClient):
        response = await enrolled_client.put(
            f"/api/v1/progress/courses/{COURSE_ID}/current-lesson", json={"lesson_id": PRACTICAL}
        )
        assert response.status_code == 200
        assert response.json() == {"success": True, "current_lesson_id": PRACTICAL}

        progress = await enrolled_client.get(f"/api/v1/progress/courses/{COURSE_ID}")
        assert progress.json()["current_lesson_id"] == PRACTICAL
        assert progress.json()["started_at"] is not None

    @pytest.mark.asyncio
    async def test_update_current_lesson_not_enrolled(self, authed_client: AsyncClient):
        response = await authed_client.put(
            f"/api/v1/progress/courses/{COURSE_ID}/current-lesson", json={"lesson_id": TEXT_1}
        )
        assert response.status_code == 409

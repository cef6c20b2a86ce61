# =============================================================================
# TESTS - /quiz endpoints
# =============================================================================

import io
import json
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from conftest import user_id

from synapse_note.main import app
from synapse_note.models import QuizAttempt
from synapse_note.routers.quizzes import get_gemini_client


DRAFT = {
    "title": "Capitals",
    "subject": "Geography",
    "difficulty": "Easy",
    "questions": [
        {"type": "multiple_choice", "question": "Capital of Japan?", "options": ["Tokyo", "Osaka"], "answer": "Tokyo", "points": 10},
        {"type": "short_answer", "question": "Capital of Italy?", "answer": "Rome", "points": 5},
    ],
}


@pytest.fixture
def gemini():
    """Fake Gemini client injected in place of the real one."""
    fake = AsyncMock()
    app.dependency_overrides[get_gemini_client] = lambda: fake
    return fake


def _png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def _save(client, headers, **overrides):
    body = {**DRAFT, **overrides}
    response = client.post("/quiz/save-draft", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestGenerate:
    """AI generation endpoints."""

    def test_requires_configured_gemini(self, client, alice):
        response = client.post("/quiz/generate", json={"subject": "Math", "topic": "Sets"}, headers=alice)

        assert response.status_code == 503

    def test_returns_draft(self, client, alice, gemini):
        gemini.generate.return_value = json.dumps([{"type": "short_answer", "question": "1+1?", "answer": "2", "points": 3}])

        response = client.post("/quiz/generate", json={"subject": "Math", "topic": "Sums", "num_questions": 1}, headers=alice)

        assert response.status_code == 200
        draft = response.json()["draft_quiz"]
        assert draft["title"] == "Sums quiz"
        assert draft["questions"][0]["answer"] == "2"

    def test_unparsable_output_is_bad_gateway(self, client, alice, gemini):
        gemini.generate.return_value = "no json here"

        response = client.post("/quiz/generate", json={"subject": "Math", "topic": "Sums"}, headers=alice)

        assert response.status_code == 502

    def test_discord_nicknames_are_resolved_in_prompt(self, client, alice, gemini):
        client.post(
            "/profile/discord",
            json={"nickname": "Kai", "discordId": "123456789012345678", "description": "team captain"},
            headers=alice,
        )
        gemini.generate.return_value = '[{"question": "Q", "answer": "A"}]'

        client.post("/quiz/generate", json={"subject": "Team", "topic": "Strategy", "example": "Ask about @Kai"}, headers=alice)

        prompt = gemini.generate.await_args.args[0]
        assert "[Discord:Kai(123456789012345678)]" in prompt
        assert "--- Discord Context ---" in prompt

    def test_generate_from_image(self, client, alice, gemini):
        gemini.generate_multimodal.side_effect = [
            '[{"question": "From image", "answer": "X"}]',
            '[{"question": "From image", "answer": "Y"}]',
        ]

        response = client.post(
            "/quiz/generate-from-image",
            data={"subject": "Biology", "num_questions": "1"},
            files=[("images", ("page.png", _png_bytes(), "image/png"))],
            headers=alice,
        )

        assert response.status_code == 200
        draft = response.json()["draft_quiz"]
        assert draft["title"] == "Biology quiz (from images)"
        assert draft["questions"][0]["answer"] == "Y"
        part = gemini.generate_multimodal.await_args_list[0].args[1][0]
        assert part["inline_data"]["mime_type"] == "image/png"

    def test_rejects_non_images(self, client, alice, gemini):
        response = client.post(
            "/quiz/generate-from-image",
            data={"subject": "Biology"},
            files=[("images", ("notes.png", b"not an image", "image/png"))],
            headers=alice,
        )

        assert response.status_code == 400

    def test_rejects_too_many_images(self, client, alice, gemini):
        png = _png_bytes()
        files = [("images", (f"p{i}.png", png, "image/png")) for i in range(6)]

        response = client.post("/quiz/generate-from-image", data={"subject": "Biology"}, files=files, headers=alice)

        assert response.status_code == 400


class TestSaveAndEdit:
    """Saving, listing, reading, editing and deleting quizzes."""

    def test_save_draft_defaults_to_private(self, client, alice):
        quiz = _save(client, alice)

        assert quiz["visibility"] == "private"
        assert quiz["author"] == "Alice"

    def test_manual_quiz_is_private(self, client, alice):
        response = client.post("/quiz/manual", json={**DRAFT, "visibility": "public"}, headers=alice)

        assert response.status_code == 201
        assert response.json()["visibility"] == "private"

    def test_invalid_visibility_is_rejected(self, client, alice):
        response = client.post("/quiz/save-draft", json={**DRAFT, "visibility": "secret"}, headers=alice)

        assert response.status_code == 400

    def test_mine_lists_own_quizzes_only(self, client, alice, bob):
        _save(client, alice, title="First")
        _save(client, alice, title="Second")
        _save(client, bob, title="Bob's")

        titles = {q["title"] for q in client.get("/quiz/mine", headers=alice).json()}

        assert titles == {"First", "Second"}

    def test_private_quiz_hidden_from_others(self, client, alice, bob):
        quiz = _save(client, alice)

        assert client.get(f"/quiz/{quiz['id']}", headers=alice).status_code == 200
        assert client.get(f"/quiz/{quiz['id']}", headers=bob).status_code == 403

    def test_unlisted_quiz_visible_to_others(self, client, alice, bob):
        quiz = _save(client, alice, visibility="unlisted")

        assert client.get(f"/quiz/{quiz['id']}", headers=bob).status_code == 200

    def test_missing_quiz(self, client, alice):
        assert client.get("/quiz/doesnotexist", headers=alice).status_code == 404

    def test_owner_can_update(self, client, alice):
        quiz = _save(client, alice)
        questions = [{"type": "short_answer", "question": "New?", "answer": "Yes", "points": "abc"}]

        response = client.put(
            f"/quiz/{quiz['id']}",
            json={"title": "Renamed", "visibility": "public", "questions": questions},
            headers=alice,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Renamed"
        assert data["visibility"] == "public"
        assert data["questions"][0]["points"] == 0

    def test_non_owner_cannot_update_or_delete(self, client, alice, bob):
        quiz = _save(client, alice, visibility="public")

        assert client.put(f"/quiz/{quiz['id']}", json={"title": "Mine now"}, headers=bob).status_code == 403
        assert client.delete(f"/quiz/{quiz['id']}", headers=bob).status_code == 403

    def test_anonymous_reads_public_quiz(self, client, alice):
        public = _save(client, alice, visibility="public")
        private = _save(client, alice)

        response = client.get(f"/quiz/{public['id']}")

        assert response.status_code == 200
        assert response.json()["title"] == "Capitals"
        assert client.get(f"/quiz/{private['id']}").status_code == 403

    def test_infinite_points_become_zero_on_update(self, client, alice):
        quiz = _save(client, alice)
        questions = [{"type": "short_answer", "question": "New?", "answer": "Yes", "points": "inf"}]

        response = client.put(f"/quiz/{quiz['id']}", json={"questions": questions}, headers=alice)

        assert response.status_code == 200
        assert response.json()["questions"][0]["points"] == 0

    def test_admin_can_view_edit_and_delete_any_quiz(self, client, alice, admin):
        quiz = _save(client, alice)

        assert client.get(f"/quiz/{quiz['id']}", headers=admin).status_code == 200
        updated = client.put(f"/quiz/{quiz['id']}", json={"title": "Moderated"}, headers=admin)
        assert updated.status_code == 200
        assert updated.json()["title"] == "Moderated"
        assert updated.json()["ownerId"] != user_id(client, admin)
        assert client.delete(f"/quiz/{quiz['id']}", headers=admin).status_code == 200
        assert client.get(f"/quiz/{quiz['id']}", headers=alice).status_code == 404

    def test_delete_removes_quiz(self, client, alice):
        quiz = _save(client, alice)

        assert client.delete(f"/quiz/{quiz['id']}", headers=alice).status_code == 200
        assert client.get(f"/quiz/{quiz['id']}", headers=alice).status_code == 404


class TestSubmit:
    """Grading submissions and stored attempts."""

    def test_saved_quiz_with_fallback_grading(self, client, alice, db):
        quiz = _save(client, alice)

        response = client.post("/quiz/submit", json={"quiz_id": quiz["id"], "answers": {"0": "Tokyo"}}, headers=alice)

        assert response.status_code == 200
        data = response.json()
        assert data["ai_error"] is True
        assert data["is_draft"] is False
        assert data["total_score"] == 10
        assert data["max_score"] == 15
        attempt = db.query(QuizAttempt).one()
        assert attempt.quiz_id == quiz["id"]
        assert attempt.total_score == 10

    def test_draft_submission_uses_model_grading(self, client, alice, gemini, db):
        gemini.generate.return_value = json.dumps([
            {"is_correct": True, "score": 10, "feedback": "Nice"},
            {"is_correct": False, "score": 0, "feedback": "Rome"},
        ])

        response = client.post("/quiz/submit", json={"draft_quiz": DRAFT, "answers": ["Tokyo", "Milan"]}, headers=alice)

        data = response.json()
        assert data["is_draft"] is True
        assert data["ai_error"] is False
        assert data["results"][0]["feedback"] == "Nice"
        assert db.query(QuizAttempt).one().quiz_id is None

    def test_missing_quiz_is_not_found(self, client, alice):
        response = client.post("/quiz/submit", json={"quiz_id": "nope", "answers": []}, headers=alice)

        assert response.status_code == 404

    def test_private_quiz_of_someone_else_is_forbidden(self, client, alice, bob):
        quiz = _save(client, alice)

        response = client.post("/quiz/submit", json={"quiz_id": quiz["id"], "answers": []}, headers=bob)

        assert response.status_code == 403

    def test_requires_quiz_or_draft(self, client, alice):
        assert client.post("/quiz/submit", json={"answers": []}, headers=alice).status_code == 400

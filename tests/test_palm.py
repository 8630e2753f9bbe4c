"""
Tests for palm-reading generation and status polling.
"""

import json

from db import PalmProfile
from palmai_core.analysis.palm_template import template_copy
from samadhan import engine_openai

PROFILE = {"hand_shape": "earth", "dominant_hand": "right"}


def _generate(client, headers, profile=PROFILE):
    return client.post("/api/generate-palm-reading", json={"palmProfile": profile}, headers=headers)


class TestGeneratePalmReading:
    """Tests for POST /api/generate-palm-reading."""

    def test_success_completes_row(self, client, db, user_headers, fake_completion):
        """A valid model answer is stored and returned with metadata."""
        fake_completion.return_value = json.dumps(template_copy())
        r = _generate(client, user_headers)
        assert r.status_code == 200
        body = r.json()
        assert body["userId"] == "user-1"
        assert body["profile"] == PROFILE
        assert "detailed_analysis" in body

        db.expire_all()
        row = db.query(PalmProfile).one()
        assert row.status == "completed"
        assert body["id"] == str(row.id)
        assert row.ai_analysis["id"] == body["id"]

    def test_fenced_answer_is_accepted(self, client, user_headers, fake_completion):
        """Prose around the JSON does not fail the reading."""
        fake_completion.return_value = "Sure!\n```json\n" + json.dumps(template_copy()) + "\n```"
        assert _generate(client, user_headers).status_code == 200

    def test_missing_profile(self, client, user_headers, fake_completion):
        """A palm profile is required."""
        r = client.post("/api/generate-palm-reading", json={}, headers=user_headers)
        assert r.status_code == 400
        assert r.json()["error"] == "Palm profile is required"

    def test_completed_reading_conflicts_without_new_row(self, client, db, user_headers, fake_completion):
        """A second request after completion is a 409 and creates nothing."""
        fake_completion.return_value = json.dumps(template_copy())
        _generate(client, user_headers)
        r = _generate(client, user_headers)
        assert r.status_code == 409
        assert "already completed" in r.json()["error"]
        db.expire_all()
        assert db.query(PalmProfile).count() == 1
        assert fake_completion.call_count == 1

    def test_processing_reading_conflicts(self, client, db, user_headers, fake_completion):
        """An in-flight reading blocks another one."""
        db.add(PalmProfile(user_id="user-1", status="processing", questionnaire_data=PROFILE,
                           ai_analysis={}))
        db.commit()
        r = _generate(client, user_headers)
        assert r.status_code == 409
        assert "in progress" in r.json()["error"]
        fake_completion.assert_not_called()

    def test_failed_reading_is_retried_in_place(self, client, db, user_headers, fake_completion):
        """A failed row moves back to processing and then completes."""
        db.add(PalmProfile(user_id="user-1", status="failed", questionnaire_data={}, ai_analysis={}))
        db.commit()
        fake_completion.return_value = json.dumps(template_copy())
        assert _generate(client, user_headers).status_code == 200
        db.expire_all()
        rows = db.query(PalmProfile).all()
        assert len(rows) == 1
        assert rows[0].status == "completed"
        assert rows[0].questionnaire_data == PROFILE

    def test_template_mismatch_fails_row(self, client, db, user_headers, fake_completion):
        """Missing template keys are listed and the row is marked failed."""
        data = template_copy()
        del data["overview_and_profile"]
        fake_completion.return_value = json.dumps(data)
        r = _generate(client, user_headers)
        assert r.status_code == 500
        body = r.json()
        assert body["error"] == "AI response does not match expected format"
        assert "overview_and_profile" in body["missingFields"]
        db.expire_all()
        assert db.query(PalmProfile).one().status == "failed"

    def test_array_answer_lists_missing_sections(self, client, db, user_headers, fake_completion):
        """A JSON array is a template mismatch, not a parse failure."""
        fake_completion.return_value = json.dumps([{"overview_and_profile": {}}])
        r = _generate(client, user_headers)
        assert r.status_code == 500
        body = r.json()
        assert body["error"] == "AI response does not match expected format"
        assert "overview_and_profile" in body["missingFields"]
        db.expire_all()
        assert db.query(PalmProfile).one().status == "failed"

    def test_non_json_answer(self, client, db, user_headers, fake_completion):
        """An answer without JSON is an invalid format."""
        fake_completion.return_value = "The stars are unclear."
        r = _generate(client, user_headers)
        assert r.json()["error"] == "Invalid analysis format received"
        db.expire_all()
        assert db.query(PalmProfile).one().status == "failed"

    def test_broken_json_block(self, client, user_headers, fake_completion):
        """An unparseable brace block is a parse failure."""
        fake_completion.return_value = "{ this is not json }"
        assert _generate(client, user_headers).json()["error"] == "Failed to parse analysis results"

    def test_completion_error(self, client, db, user_headers, fake_completion):
        """An upstream failure marks the row failed."""
        fake_completion.side_effect = engine_openai.CompletionError("down")
        r = _generate(client, user_headers)
        assert r.status_code == 500
        assert r.json()["error"] == "Failed to analyze palm profile"
        db.expire_all()
        assert db.query(PalmProfile).one().status == "failed"

    def test_unexpected_error_fails_row_and_allows_retry(self, client, db, user_headers, fake_completion):
        """An unexpected crash still marks the row failed, so the user can resubmit."""
        fake_completion.side_effect = RuntimeError("boom")
        r = _generate(client, user_headers)
        assert r.status_code == 500
        assert r.json() == {"error": "Internal server error"}
        db.expire_all()
        assert db.query(PalmProfile).one().status == "failed"

        fake_completion.side_effect = None
        fake_completion.return_value = json.dumps(template_copy())
        r = _generate(client, user_headers)
        assert r.status_code == 200
        db.expire_all()
        row = db.query(PalmProfile).one()
        assert row.status == "completed"


class TestCheckPalmAnalysis:
    """Tests for GET /api/check-palm-analysis."""

    def test_not_started(self, client, user_headers):
        """No rows means not_started."""
        r = client.get("/api/check-palm-analysis", headers=user_headers)
        assert r.json() == {"status": "not_started", "analysis": None, "userId": "user-1"}

    def test_completed_returns_analysis(self, client, user_headers, fake_completion):
        """The stored analysis comes back with the same id as generation returned."""
        fake_completion.return_value = json.dumps(template_copy())
        generated = _generate(client, user_headers).json()
        r = client.get("/api/check-palm-analysis", headers=user_headers).json()
        assert r["status"] == "completed"
        assert r["analysis"]["id"] == generated["id"]

    def test_failed_returns_saved_data(self, client, db, user_headers):
        """A failed reading hands back what the user submitted."""
        db.add(PalmProfile(user_id="user-1", status="failed", questionnaire_data=PROFILE,
                           palm_image_url="https://img/palm.jpg", ai_analysis={}))
        db.commit()
        r = client.get("/api/check-palm-analysis", headers=user_headers).json()
        assert r["status"] == "failed"
        assert r["savedData"] == {"palmImageUrl": "https://img/palm.jpg", "questionnaire_data": PROFILE}

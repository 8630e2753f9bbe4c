"""
Tests for the Samadhan chat pipeline and its daily quota.
"""

from datetime import datetime, timezone

from db import ChatSession, PalmProfile, UserMessageLimit
from samadhan import engine_openai
from samadhan.routes import get_or_create_limit, reserve_message
from samadhan.utils_prompt import PERSONA, build_chat_messages, build_chat_system_prompt


def _today():
    return datetime.now(timezone.utc).date()


class TestQuotaHelpers:
    """Tests for the quota row and reservation."""

    def test_limit_row_created_lazily(self, db):
        """The first lookup creates today's row with the configured limit."""
        row = get_or_create_limit(db, "u1")
        assert row.message_count == 0
        assert row.daily_limit == 10
        assert row.date == _today()
        assert get_or_create_limit(db, "u1").id == row.id

    def test_reserve_stops_at_limit(self, db):
        """Reservation succeeds until the limit, then refuses."""
        row = get_or_create_limit(db, "u1")
        row.daily_limit = 2
        db.commit()
        assert reserve_message(db, row.id) is True
        assert reserve_message(db, row.id) is True
        assert reserve_message(db, row.id) is False
        db.expire_all()
        assert db.get(UserMessageLimit, row.id).message_count == 2


class TestPromptBuilding:
    """Tests for system prompt and message assembly."""

    def test_system_prompt_without_analysis(self):
        """No palm context when the user has no completed reading."""
        prompt = build_chat_system_prompt(None)
        assert prompt.startswith(PERSONA)
        assert "Personality Profile" not in prompt

    def test_system_prompt_with_analysis(self):
        """Personality, traits and life areas are woven in."""
        analysis = {"overview_and_profile": {
            "personality_overview": {"content": "Calm and curious", "traits": ["Loyal", "Bold"]},
            "analysis_highlights": {"career_card": {"summary": "Leader"}},
        }}
        prompt = build_chat_system_prompt(analysis)
        assert "User's Personality Profile: Calm and curious" in prompt
        assert "Key Traits: Loyal, Bold" in prompt
        assert "- Career: Leader" in prompt

    def test_history_is_truncated(self):
        """Only the most recent turns are sent."""
        history = [{"role": "user", "content": str(i)} for i in range(15)]
        msgs = build_chat_messages("sys", history, "hello", history_turns=10)
        assert msgs[0] == {"role": "system", "content": "sys"}
        assert [m["content"] for m in msgs[1:-1]] == [str(i) for i in range(5, 15)]
        assert msgs[-1] == {"role": "user", "content": "hello"}


class TestChatCompletion:
    """Tests for POST /api/chat-completion."""

    def test_reply_is_saved_and_counted(self, client, db, user_headers, fake_completion):
        """A reply is returned, persisted and counted once."""
        r = client.post("/api/chat-completion", json={"message": "Will I travel?"}, headers=user_headers)
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["ai_message"]["role"] == "assistant"
        assert body["ai_message"]["content"] == "Your heart line speaks of warmth."
        assert [m["role"] for m in body["all_messages"]] == ["user", "assistant"]

        db.expire_all()
        session = db.query(ChatSession).filter(ChatSession.user_id == "user-1").one()
        assert session.title == "Chat with Samadhan"
        assert len(session.messages) == 2
        assert db.query(UserMessageLimit).one().message_count == 1

    def test_invalid_message(self, client, user_headers, fake_completion):
        """Blank or non-string messages are rejected."""
        for payload in ({"message": "   "}, {"message": 42}, {}):
            r = client.post("/api/chat-completion", json=payload, headers=user_headers)
            assert r.status_code == 400
            assert r.json()["error"] == "Valid message is required"
        fake_completion.assert_not_called()

    def test_limit_reached(self, client, db, user_headers, fake_completion):
        """At the limit the request is refused with counters and no completion call."""
        db.add(UserMessageLimit(user_id="user-1", date=_today(), message_count=10, daily_limit=10))
        db.commit()
        r = client.post("/api/chat-completion", json={"message": "hi"}, headers=user_headers)
        assert r.status_code == 429
        body = r.json()
        assert body["limitReached"] is True
        assert body["currentCount"] == 10
        assert body["dailyLimit"] == 10
        assert body["success"] is False
        fake_completion.assert_not_called()

    def test_failed_completion_is_not_counted(self, client, db, user_headers, fake_completion):
        """A failed completion gives the reserved message back."""
        fake_completion.side_effect = engine_openai.CompletionError("timeout")
        r = client.post("/api/chat-completion", json={"message": "hi"}, headers=user_headers)
        assert r.status_code == 500
        assert r.json()["error"] == "Failed to get AI response"
        db.expire_all()
        assert db.query(UserMessageLimit).one().message_count == 0
        assert db.query(ChatSession).count() == 0

    def test_unexpected_error_releases_reserved_message(self, client, db, user_headers, fake_completion):
        """A crash during the completion also gives the reserved message back."""
        fake_completion.side_effect = RuntimeError("boom")
        r = client.post("/api/chat-completion", json={"message": "hi"}, headers=user_headers)
        assert r.status_code == 500
        db.expire_all()
        assert db.query(UserMessageLimit).one().message_count == 0

    def test_history_is_sent_and_new_chat_clears_it(self, client, db, user_headers, fake_completion):
        """Prior turns reach the model; new_chat starts from an empty transcript."""
        client.post("/api/chat-completion", json={"message": "first"}, headers=user_headers)
        client.post("/api/chat-completion", json={"message": "second"}, headers=user_headers)
        sent = fake_completion.call_args.kwargs["messages"]
        assert [m["content"] for m in sent if m["role"] == "user"] == ["first", "second"]

        r = client.post("/api/chat-completion", json={"message": "fresh", "action": "new_chat"},
                        headers=user_headers)
        assert len(r.json()["all_messages"]) == 2
        sent = fake_completion.call_args.kwargs["messages"]
        assert len(sent) == 2

    def test_palm_analysis_feeds_system_prompt(self, client, db, user_headers, fake_completion):
        """A completed palm reading becomes chat context."""
        db.add(PalmProfile(user_id="user-1", status="completed", questionnaire_data={},
                           ai_analysis={"overview_and_profile": {
                               "personality_overview": {"content": "Deeply intuitive"}}}))
        db.commit()
        client.post("/api/chat-completion", json={"message": "hi"}, headers=user_headers)
        system = fake_completion.call_args.kwargs["messages"][0]["content"]
        assert "Deeply intuitive" in system


class TestLimitAndHistoryEndpoints:
    """Tests for check-message-limit and chat-history."""

    def test_check_limit_fresh_user(self, client, user_headers):
        """A new user has the full allowance."""
        r = client.post("/api/check-message-limit", headers=user_headers)
        assert r.json() == {"success": True, "canSendMessage": True, "currentCount": 0,
                            "dailyLimit": 10, "remainingMessages": 10}

    def test_chat_history_empty(self, client, user_headers):
        """No session yet means an empty history."""
        r = client.get("/api/chat-history", headers=user_headers)
        assert r.json()["messages"] == []

from fastapi.testclient import TestClient

from src.projectbot.api.main import app
from src.projectbot.services.chat_responder import EMPTY_RESPONSE, FALLBACK_CITATION, FALLBACK_CONTENT

from .utils import seed_chatbot


client = TestClient(app)

BUDGET_CHUNK = "SPREADSHEET DATA: [Excel Sheet: Budget] B12: $45,000"


def _budget_bot(storage, **fields):
    bot = seed_chatbot(storage, require_auth=True, public_token="abc", **fields)
    storage.create_document(bot.id, "Budget.xlsx", "spreadsheet", BUDGET_CHUNK)
    return bot


def test_budget_question_persists_content_and_citation(storage, stub_llm):
    bot = _budget_bot(storage)
    stub_llm.reply = "The budget is $45,000 [Source: Budget.xlsx]"

    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "What is the budget?", "token": "abc"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["user_message"]["content"] == "What is the budget?"
    assert body["user_message"]["is_user_message"] is True
    assert body["bot_message"]["content"] == "The budget is $45,000"
    assert body["bot_message"]["citation"] == "Budget.xlsx"

    stored = storage.list_messages(bot.id)
    assert [m.is_user_message for m in stored] == [True, False]
    assert stored[1].content == "The budget is $45,000"

    # The document chunk reached the provider as context.
    sent = stub_llm.calls[0]
    assert any(BUDGET_CHUNK in m["content"] for m in sent if m["role"] == "system")
    assert sent[-1] == {"role": "user", "content": "What is the budget?"}
    assert stub_llm.init_kwargs[0]["temperature"] == 0.7


def test_wrong_token_is_rejected_before_any_model_call(storage, stub_llm):
    bot = _budget_bot(storage)

    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "What is the budget?", "token": "wrong"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Valid token required"
    assert stub_llm.calls == []
    assert storage.count_messages(bot.id) == 0


def test_missing_token_is_rejected_when_auth_required(storage, stub_llm):
    bot = _budget_bot(storage)
    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "hi"})
    assert r.status_code == 401
    assert stub_llm.calls == []


def test_open_chatbot_accepts_any_token(storage, stub_llm):
    bot = seed_chatbot(storage, require_auth=False, public_token="abc")
    for token in (None, "", "abc", "something-else"):
        payload = {"message": "hello"}
        if token is not None:
            payload["token"] = token
        r = client.post(f"/api/chatbots/{bot.id}/chat", json=payload)
        assert r.status_code == 200, r.text
    assert len(stub_llm.calls) == 4


def test_unknown_chatbot_returns_404(stub_llm):
    r = client.post("/api/chatbots/999/chat", json={"message": "hello"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Chatbot not found"


def test_inactive_chatbot_is_forbidden(storage, stub_llm):
    bot = seed_chatbot(storage, is_active=False)
    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "hello"})
    assert r.status_code == 403
    assert stub_llm.calls == []


def test_provider_failure_degrades_to_apology(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.error = RuntimeError("provider down")

    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "status?"})
    assert r.status_code == 200
    bot_message = r.json()["bot_message"]
    assert bot_message["content"] == FALLBACK_CONTENT
    assert bot_message["citation"] == FALLBACK_CITATION
    assert "provider down" not in r.text


def test_empty_completion_uses_not_found_answer(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.reply = "   "
    r = client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "status?"})
    assert r.json()["bot_message"]["content"] == EMPTY_RESPONSE


def test_message_history_is_token_checked_and_ordered(storage, stub_llm):
    bot = seed_chatbot(storage, require_auth=True, public_token="abc")
    client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "first", "token": "abc"})
    client.post(f"/api/chatbots/{bot.id}/chat", json={"message": "second", "token": "abc"})

    assert client.get(f"/api/chatbots/{bot.id}/messages", params={"token": "nope"}).status_code == 401

    r = client.get(f"/api/chatbots/{bot.id}/messages", params={"token": "abc"})
    assert [m["content"] for m in r.json()] == ["first", "OK", "second", "OK"]

    r = client.get(f"/api/chatbots/{bot.id}/messages", params={"token": "abc", "limit": 2})
    assert [m["content"] for m in r.json()] == ["second", "OK"]


def test_public_lookup_returns_sanitized_chatbot(storage):
    seed_chatbot(storage, public_token="pub123", system_prompt="secret prompt")
    r = client.get("/api/public/chatbot/pub123")
    assert r.status_code == 200
    assert set(r.json()) == {"id", "name", "public_token", "is_active", "require_auth"}
    assert client.get("/api/public/chatbot/missing").status_code == 404

import json

from fastapi.testclient import TestClient

from src.projectbot.api.main import app
from src.projectbot.services.chat_responder import FALLBACK_CONTENT
from src.projectbot.services.streaming import OPEN_COMMENT

from .utils import parse_sse, seed_chatbot


client = TestClient(app)


def _stream(bot_id, payload, **kwargs):
    return client.post(f"/api/chatbots/{bot_id}/stream", json=payload, **kwargs)


def test_tokens_are_relayed_in_order_then_done(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.tokens = ["The budget ", "is $45,000 ", "[Source: Budget.xlsx]"]

    r = _stream(bot.id, {"message": "What is the budget?"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache, no-transform"
    assert r.headers["x-accel-buffering"] == "no"

    frames = parse_sse(r.text)
    assert [f["data"] for f in frames[:3]] == ["The budget ", "is $45,000 ", "[Source: Budget.xlsx]"]
    assert frames[-1]["event"] == "done"
    done = json.loads(frames[-1]["data"])
    assert done["citation"] == "Budget.xlsx"

    stored = storage.list_messages(bot.id)
    assert [m.is_user_message for m in stored] == [True, False]
    assert stored[-1].id == done["message_id"]
    assert stored[-1].content == "The budget is $45,000"
    assert stub_llm.closed == 1


def test_stream_and_blocking_paths_persist_identical_replies(storage, stub_llm):
    answer = "Framing finishes Friday according to Dana [From Schedule.pdf]"
    streamed_bot = seed_chatbot(storage, name="A", public_token="a1")
    blocking_bot = seed_chatbot(storage, name="B", public_token="b1")

    stub_llm.tokens = ["Framing ", "finishes Friday ", "according to Dana ", "[From Schedule.pdf]"]
    _stream(streamed_bot.id, {"message": "When is framing done?"})
    stub_llm.reply = answer
    client.post(f"/api/chatbots/{blocking_bot.id}/chat", json={"message": "When is framing done?"})

    streamed = storage.list_messages(streamed_bot.id)[-1]
    blocking = storage.list_messages(blocking_bot.id)[-1]
    assert (streamed.content, streamed.citation) == (blocking.content, blocking.citation)
    assert streamed.citation == "Schedule.pdf"


def test_multiline_tokens_become_multiple_data_lines(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.tokens = ["line one\nline two"]
    r = _stream(bot.id, {"message": "hi"})
    assert "data: line one\ndata: line two\n\n" in r.text
    assert parse_sse(r.text)[0]["data"] == "line one\nline two"


def test_mid_stream_failure_sends_error_event_and_persists_nothing(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.tokens = ["Partial ", RuntimeError("connection reset")]

    r = _stream(bot.id, {"message": "hi"})
    assert r.status_code == 200
    frames = parse_sse(r.text)
    assert frames[0]["data"] == "Partial "
    assert frames[-1]["event"] == "error"
    assert json.loads(frames[-1]["data"]) == {"error": "Error generating response"}
    assert "connection reset" not in r.text

    stored = storage.list_messages(bot.id)
    assert len(stored) == 1 and stored[0].is_user_message
    assert stub_llm.closed == 1


def test_idle_timeout_errors_the_stream(storage, stub_llm, monkeypatch):
    monkeypatch.setenv("PROJECTBOT_STREAM_IDLE_TIMEOUT_SEC", "0.05")
    bot = seed_chatbot(storage)
    stub_llm.tokens = ["first ", 1.0, "never"]

    frames = parse_sse(_stream(bot.id, {"message": "hi"}).text)
    assert frames[0]["data"] == "first "
    assert frames[-1]["event"] == "error"
    assert all(f["data"] != "never" for f in frames)
    assert storage.count_messages(bot.id) == 1


def test_headers_flush_before_the_first_token(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.tokens = [0.05, "late"]

    r = _stream(bot.id, {"message": "hi"})
    assert r.status_code == 200
    assert r.text.startswith(OPEN_COMMENT)
    assert parse_sse(r.text)[0]["data"] == "late"


def test_first_token_timeout_is_an_error_event(storage, stub_llm, monkeypatch):
    monkeypatch.setenv("PROJECTBOT_STREAM_FIRST_TOKEN_TIMEOUT_SEC", "0.05")
    bot = seed_chatbot(storage)
    stub_llm.tokens = [1.0, "late"]

    r = _stream(bot.id, {"message": "hi"})
    assert r.status_code == 200
    frames = parse_sse(r.text)
    assert [f["event"] for f in frames] == ["error"]
    assert storage.count_messages(bot.id) == 1
    assert stub_llm.closed == 1


def test_provider_failure_before_first_token_is_an_error_event(storage, stub_llm):
    bot = seed_chatbot(storage)
    stub_llm.error = RuntimeError("bad key")

    r = _stream(bot.id, {"message": "hi"})
    assert r.status_code == 200
    frames = parse_sse(r.text)
    assert [f["event"] for f in frames] == ["error"]
    assert "bad key" not in r.text
    assert storage.count_messages(bot.id) == 1


def test_missing_model_key_is_502_before_streaming(storage, stub_llm, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    bot = seed_chatbot(storage)

    r = _stream(bot.id, {"message": "hi"})
    assert r.status_code == 502
    assert r.json()["detail"] == FALLBACK_CONTENT
    assert stub_llm.calls == []


def test_wrong_token_never_opens_a_stream(storage, stub_llm):
    bot = seed_chatbot(storage, require_auth=True, public_token="abc")

    r = _stream(bot.id, {"message": "hi", "token": "wrong"})
    assert r.status_code == 401
    assert "text/event-stream" not in r.headers.get("content-type", "")
    assert stub_llm.calls == []
    assert storage.count_messages(bot.id) == 0


def test_internal_harness_referer_skips_token_check(storage, stub_llm, monkeypatch):
    monkeypatch.setenv("PROJECTBOT_TEST_HARNESS_REFERERS", "/streaming-demo")
    bot = seed_chatbot(storage, require_auth=True, public_token="abc")
    stub_llm.tokens = ["ok"]

    r = _stream(bot.id, {"message": "hi"}, headers={"Referer": "http://localhost:5173/streaming-demo"})
    assert r.status_code == 200
    assert parse_sse(r.text)[-1]["event"] == "done"

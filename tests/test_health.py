from fastapi.testclient import TestClient

from src.projectbot.api.main import app


client = TestClient(app)


def test_health_reports_components():
    for path in ("/health", "/api/health"):
        r = client.get(path)
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "ok"
        assert body["components"]["storage"] == "memory"
        assert body["components"]["model"] == "configured"
        assert body["components"]["slack"] == "missing"
        assert body["components"]["scheduler"] == "stopped"


def test_health_flags_missing_model_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    assert client.get("/health").json()["components"]["model"] == "missing"


def test_root_names_the_service():
    assert client.get("/").json()["name"] == "Project Chatbot API"

"""
Chat API tests

Tests for:
- POST /api/chat structured and legacy responses
- Upstream failure surfacing (502 + apology)
- Routing fallbacks staying invisible to the caller
- Startup fail-fast on missing configuration
- Auxiliary routes (/healthz, /v1/models, /debug/router_decision)
"""
import dataclasses
import re

import pytest
from fastapi.testclient import TestClient

from app.main import APOLOGY
from app.schemas import MAX_MESSAGE_CHARS
from graph.errors import ConfigError
from graph.routing import DEFAULT_REASONING, PARSE_ERROR_REASONING
from tests.utils import CODE_MODEL, REASONING_MODEL, SIMPLE_MODEL, decision_json


class TestChatEndpoint:

    def test_end_to_end_hello(self, client, install_pipeline):
        install_pipeline(
            classifier_output=decision_json(SIMPLE_MODEL, "Simple greeting."),
            reply="analysis the user wrote hello so answer: Hi there!",
        )
        response = client.post("/api/chat", json={"message": "hello"})
        assert response.status_code == 200
        data = response.json()

        assert data["reply"] == "Hi there!"
        assert data["model"] == SIMPLE_MODEL
        assert data["reasoning"] == "Simple greeting."
        perf = data["performance"]
        assert set(perf) == {"throughput", "timeToFirstToken", "tokensPerSecond", "cost", "actualTimeToFirstToken"}
        assert perf["timeToFirstToken"] == "0.52s"
        assert re.match(r"^\d+\.\d{2}s$", perf["actualTimeToFirstToken"])

        assert response.headers["X-Chat-Router-Model"] == SIMPLE_MODEL
        assert response.headers["X-Chat-Router-Sanitized"] == "true"
        assert response.headers["X-Chat-Router-Residual-Artifacts"] == "false"

    def test_coding_reply_is_not_cleaned(self, client, install_pipeline):
        classifier, completer = install_pipeline(
            classifier_output=decision_json(CODE_MODEL, "Coding task."),
            reply="analysis: def f(): pass",
        )
        response = client.post("/api/chat", json={"message": "write f"})
        assert response.status_code == 200
        assert response.json()["reply"] == "analysis: def f(): pass"
        assert response.headers["X-Chat-Router-Sanitized"] == "false"
        assert completer.calls == [(CODE_MODEL, [{"role": "user", "content": "write f"}])]
        assert len(classifier.prompts) == 1

    def test_legacy_response_shape(self, client, install_pipeline):
        install_pipeline(classifier_output=decision_json(CODE_MODEL), reply="def f(): pass")
        client.app.state.settings = dataclasses.replace(client.app.state.settings, response_format="legacy")
        response = client.post("/api/chat", json={"message": "write f"})
        assert response.status_code == 200
        assert response.json() == {"message": f" Model: {CODE_MODEL} \n\n\n Reply: def f(): pass"}

    def test_upstream_failure_returns_apology(self, client, install_pipeline):
        install_pipeline(
            classifier_output=decision_json(REASONING_MODEL),
            completion_error=RuntimeError("502 from provider"),
        )
        response = client.post("/api/chat", json={"message": "prove it"})
        assert response.status_code == 502
        data = response.json()
        assert data["error"] == "upstream_completion_failure"
        assert data["message"] == APOLOGY
        assert data["model"] == REASONING_MODEL

    def test_empty_reply_is_success(self, client, install_pipeline):
        install_pipeline(classifier_output=decision_json(CODE_MODEL), reply=None)
        response = client.post("/api/chat", json={"message": "write f"})
        assert response.status_code == 200
        assert response.json()["reply"] == ""

    @pytest.mark.parametrize("kwargs,reasoning", [
        ({"classifier_error": ConnectionError("down")}, DEFAULT_REASONING),
        ({"classifier_output": None}, DEFAULT_REASONING),
        ({"classifier_output": "not json"}, PARSE_ERROR_REASONING),
    ])
    def test_routing_failures_are_invisible(self, client, install_pipeline, kwargs, reasoning):
        _, completer = install_pipeline(reply="A perfectly normal answer.", **kwargs)
        response = client.post("/api/chat", json={"message": "hello"})
        assert response.status_code == 200
        data = response.json()
        assert data["model"] == SIMPLE_MODEL
        assert data["reasoning"] == reasoning
        assert completer.calls[0][0] == SIMPLE_MODEL

    def test_unknown_model_is_substituted(self, client, install_pipeline):
        _, completer = install_pipeline(classifier_output=decision_json("mistralai/mixtral-8x7b"))
        response = client.post("/api/chat", json={"message": "a poem please"})
        assert response.status_code == 200
        assert response.json()["model"] == SIMPLE_MODEL
        assert completer.calls[0][0] == SIMPLE_MODEL

    def test_unknown_model_passthrough(self, client, install_pipeline):
        install_pipeline(
            classifier_output=decision_json("mistralai/mixtral-8x7b"),
            unknown_model_policy="passthrough",
        )
        response = client.post("/api/chat", json={"message": "a poem please"})
        assert response.status_code == 200
        data = response.json()
        assert data["model"] == "mistralai/mixtral-8x7b"
        assert data["performance"]["cost"] == "N/A"

    def test_empty_message_accepted(self, client, install_pipeline):
        install_pipeline(classifier_output=decision_json(SIMPLE_MODEL))
        response = client.post("/api/chat", json={"message": ""})
        assert response.status_code == 200

    def test_missing_message_rejected(self, client):
        response = client.post("/api/chat", json={})
        assert response.status_code == 422

    def test_oversized_message_rejected(self, client, install_pipeline):
        classifier, completer = install_pipeline(classifier_output=decision_json(SIMPLE_MODEL))
        response = client.post("/api/chat", json={"message": "x" * (MAX_MESSAGE_CHARS + 1)})
        assert response.status_code == 422
        assert classifier.prompts == []
        assert completer.calls == []


class TestStartup:

    def test_missing_api_key_fails_startup(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        from app.main import app
        with pytest.raises(ConfigError):
            with TestClient(app):
                pass

    def test_production_pipeline_built(self, client):
        pipeline = client.app.state.pipeline
        assert pipeline.config.catalog.ids() == [SIMPLE_MODEL, CODE_MODEL, REASONING_MODEL]
        assert client.app.state.settings.response_format == "structured"


class TestAuxiliaryRoutes:

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_models_lists_catalog_only(self, client):
        response = client.get("/v1/models")
        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"
        ids = [m["id"] for m in data["data"]]
        assert ids == [SIMPLE_MODEL, CODE_MODEL, REASONING_MODEL]
        defaults = [m["id"] for m in data["data"] if m.get("default")]
        assert defaults == [SIMPLE_MODEL]

    def test_debug_router_decision_skips_completion(self, client, install_pipeline):
        _, completer = install_pipeline(classifier_output=decision_json(CODE_MODEL, "Coding task."))
        response = client.post("/debug/router_decision", json={"prompt": "debug this code"})
        assert response.status_code == 200
        data = response.json()
        assert data["model"] == CODE_MODEL
        assert data["reasoning"] == "Coding task."
        assert data["in_catalog"] is True
        assert data["default_model"] == SIMPLE_MODEL
        assert completer.calls == []

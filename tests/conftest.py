import pytest
from fastapi.testclient import TestClient

from tests.utils import StubClassifier, StubCompleter

# Fixed fake key: building the provider clients never touches the network.
TEST_API_KEY = "sk-or-test-mock-key"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """
    Ensure every test runs with a clean/known environment.
    Automatically used for all tests.
    """
    monkeypatch.setenv("OPENROUTER_API_KEY", TEST_API_KEY)
    monkeypatch.delenv("OPENROUTER_BASE_URL", raising=False)
    monkeypatch.delenv("ROUTER_RESPONSE_FORMAT", raising=False)
    monkeypatch.delenv("UNKNOWN_MODEL_POLICY", raising=False)
    monkeypatch.delenv("UPSTREAM_TIMEOUT_SEC", raising=False)
    monkeypatch.delenv("UPSTREAM_MAX_RETRIES", raising=False)
    monkeypatch.setenv("UPSTREAM_RETRY_JITTER_SEC", "0")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    # Keep developer .env files out of the test session.
    monkeypatch.setattr("app.settings.load_dotenv", lambda *a, **kw: False)
    yield


@pytest.fixture
def router_config():
    from graph.catalog import load_router_config
    return load_router_config()


@pytest.fixture
def make_pipeline(router_config):
    """
    Build a Pipeline around stub classifier/completer callables.
    Returns (pipeline, classifier, completer).
    """
    from graph.router import Pipeline

    def _make(classifier_output=None, reply="OK RESULT", classifier_error=None,
              completion_error=None, unknown_model_policy=None):
        classifier = StubClassifier(classifier_output, classifier_error)
        completer = StubCompleter(reply, completion_error)
        pipeline = Pipeline.from_parts(
            router_config, classifier, completer,
            unknown_model_policy=unknown_model_policy,
        )
        return pipeline, classifier, completer

    return _make


@pytest.fixture
def client():
    """
    Create a TestClient with the FastAPI app.
    Lazy import ensures app is initialized with test env vars.
    Uses context manager pattern so the lifespan (settings + pipeline) runs.
    """
    from app.main import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def install_pipeline(client, make_pipeline):
    """Swap the app's production pipeline for one built on stubs."""
    def _install(**kwargs):
        pipeline, classifier, completer = make_pipeline(**kwargs)
        client.app.state.pipeline = pipeline
        return classifier, completer
    return _install

"""
Chat Router - LLM-routed chat completions

One routing decision per message, then one completion call:
1. route -> RoutingPolicy asks a small classifier model which catalog model
   should answer (JSON contract, deterministic fallback)
2. dispatch -> CompletionDispatcher calls that model, times it and cleans
   the reply when the model is known to leak training artifacts

Policy and dispatcher are injected so the graph can run against stub
classifier/completer callables in tests.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, TypedDict

from langgraph.graph import END, StateGraph

from graph.catalog import RouterConfig, load_router_config
from graph.dispatch import CompletionDispatcher
from graph.routing import RoutingPolicy
from graph.sanitizer import ResponseSanitizer
from providers.openai_client import make_classifier, make_completer

logger = logging.getLogger("chat-router.graph")


# ---------- State ----------
class RouterState(TypedDict, total=False):
    message: str
    received_at: float  # time.perf_counter() at request receipt

    model: str
    reasoning: str

    reply: str
    elapsed_ms: float
    performance: Dict[str, str]
    sanitized: bool
    residual_artifacts: bool


# ---------- Graph Builder ----------
def build_compiled_router(policy: RoutingPolicy, dispatcher: CompletionDispatcher):
    """
    Build the compiled LangGraph router.

    Graph flow: route -> dispatch -> END
    """

    def _node_route(state: RouterState) -> RouterState:
        decision = policy.route(state.get("message", ""))
        return {"model": decision.model, "reasoning": decision.reasoning}

    def _node_dispatch(state: RouterState) -> RouterState:
        result = dispatcher.dispatch(
            state["model"],
            state.get("message", ""),
            received_at=state.get("received_at"),
        )
        return {
            "model": result.model,
            "reply": result.reply,
            "elapsed_ms": result.elapsed_ms,
            "performance": asdict(result.performance),
            "sanitized": result.sanitized,
            "residual_artifacts": result.residual_artifacts,
        }

    g = StateGraph(RouterState)
    g.add_node("route", _node_route)
    g.add_node("dispatch", _node_dispatch)

    g.set_entry_point("route")
    g.add_edge("route", "dispatch")
    g.add_edge("dispatch", END)

    return g.compile()


# ---------- Wiring ----------
@dataclass
class Pipeline:
    config: RouterConfig
    policy: RoutingPolicy
    dispatcher: CompletionDispatcher
    router_app: Any

    @classmethod
    def from_parts(cls, config: RouterConfig, classifier, completer,
                   sanitizer: Optional[ResponseSanitizer] = None,
                   unknown_model_policy: Optional[str] = None) -> "Pipeline":
        policy = RoutingPolicy(classifier, config.catalog)
        dispatcher = CompletionDispatcher(
            completer,
            config.catalog,
            sanitizer or ResponseSanitizer.from_config(config.sanitizer),
            unknown_model_policy=unknown_model_policy or config.unknown_model_policy,
        )
        return cls(config, policy, dispatcher, build_compiled_router(policy, dispatcher))

    async def run(self, message: str, received_at: Optional[float] = None) -> RouterState:
        state: RouterState = {
            "message": message,
            "received_at": received_at if received_at is not None else time.perf_counter(),
        }
        return await self.router_app.ainvoke(state)


def build_pipeline(settings) -> Pipeline:
    """Production wiring: YAML catalog plus OpenRouter-backed classifier/completer."""
    config = load_router_config(settings.config_path)
    pipeline = Pipeline.from_parts(
        config,
        make_classifier(settings, config),
        make_completer(settings, config),
        unknown_model_policy=settings.unknown_model_policy,
    )
    logger.info(json.dumps({
        "evt": "pipeline_ready",
        "models": config.catalog.ids(),
        "default_model": config.catalog.default_model,
        "classifier": config.classifier.model,
        "unknown_model_policy": pipeline.dispatcher.unknown_model_policy,
    }))
    return pipeline


def debug_router_decision(pipeline: Pipeline, prompt: str) -> Dict[str, Any]:
    """Routing only, no completion call. Used by POST /debug/router_decision."""
    decision = pipeline.policy.route(prompt)
    return {
        **decision.to_dict(),
        "in_catalog": decision.model in pipeline.config.catalog,
        "default_model": pipeline.config.catalog.default_model,
        "available_models": pipeline.config.catalog.ids(),
    }

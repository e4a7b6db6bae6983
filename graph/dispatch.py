import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from graph.catalog import ModelCatalog, PerformanceSnapshot
from graph.errors import UpstreamCompletionFailure
from graph.sanitizer import ResponseSanitizer

logger = logging.getLogger("chat-router.dispatch")

# (model id, messages) -> reply text or None
Completer = Callable[[str, List[Dict[str, str]]], Optional[str]]


@dataclass(frozen=True)
class DispatchResult:
    model: str
    reply: str
    elapsed_ms: float
    performance: PerformanceSnapshot
    sanitized: bool = False
    residual_artifacts: bool = False


class CompletionDispatcher:
    def __init__(
        self,
        completer: Completer,
        catalog: ModelCatalog,
        sanitizer: ResponseSanitizer,
        unknown_model_policy: str = "substitute",
    ):
        self.completer = completer
        self.catalog = catalog
        self.sanitizer = sanitizer
        self.unknown_model_policy = unknown_model_policy

    def resolve_model(self, model: str) -> str:
        if model in self.catalog or self.unknown_model_policy == "passthrough":
            return model
        logger.warning(json.dumps({
            "evt": "dispatch_model_substituted",
            "requested": model,
            "model": self.catalog.default_model,
        }))
        return self.catalog.default_model

    def sanitize(self, model: str, reply: str) -> tuple:
        """Returns (reply, residual_artifacts)."""
        cleaned = self.sanitizer.clean(reply)
        logger.info(json.dumps({
            "evt": "response_cleaned",
            "model": model,
            "raw_chars": len(reply),
            "clean_chars": len(cleaned),
        }))

        if self.sanitizer.has_artifacts(cleaned):
            candidate = self.sanitizer.extract_answer(reply, first_pass=cleaned)
            if candidate:
                logger.info(json.dumps({
                    "evt": "fallback_cleaning_applied",
                    "model": model,
                    "clean_chars": len(candidate),
                }))
                cleaned = candidate

        remaining = self.sanitizer.find_artifacts(cleaned)
        if remaining:
            logger.warning(json.dumps({"evt": "residual_artifacts", "model": model, "artifacts": remaining}))
        return cleaned, bool(remaining)

    def dispatch(self, model: str, message: str, received_at: Optional[float] = None) -> DispatchResult:
        """
        Send `message` as the whole conversation to `model`.

        `received_at` is a time.perf_counter() reading taken when the request
        arrived; the reported time-to-first-token runs from there to the end
        of the completion call. Non-streaming, so this is a proxy only.
        """
        model = self.resolve_model(model)
        messages = [{"role": "user", "content": message}]

        start = time.perf_counter()
        try:
            raw = self.completer(model, messages)
        except Exception as e:
            logger.error(json.dumps({"evt": "upstream_completion_failed", "model": model, "error": f"{type(e).__name__}: {e}"}))
            raise UpstreamCompletionFailure(model, f"Completion call to {model} failed: {e}") from e
        end = time.perf_counter()

        elapsed_ms = (end - start) * 1000
        reply = raw or ""

        entry = self.catalog.get(model)
        sanitized = False
        residual = False
        if entry is not None and entry.sanitize and reply:
            reply, residual = self.sanitize(model, reply)
            sanitized = True

        origin = received_at if received_at is not None and received_at <= start else start
        performance = PerformanceSnapshot.from_entry(entry, (end - origin) * 1000)

        return DispatchResult(
            model=model,
            reply=reply,
            elapsed_ms=elapsed_ms,
            performance=performance,
            sanitized=sanitized,
            residual_artifacts=residual,
        )

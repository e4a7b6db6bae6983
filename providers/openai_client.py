import logging
from typing import Any, Dict, List, Optional

import openai
from langchain_core.runnables import Runnable, RunnableLambda
from langchain_openai import ChatOpenAI
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_random

from app.settings import Settings
from graph.catalog import RouterConfig

logger = logging.getLogger("chat-router.openai")

# Worth one more attempt; auth, quota and bad-request errors are not.
# APITimeoutError is a subclass of APIConnectionError.
TRANSIENT_ERRORS = (openai.APIConnectionError, openai.InternalServerError)

JSON_RESPONSE_FORMAT = {"type": "json_object"}


def _to_text(message: Any) -> Optional[str]:
    content = getattr(message, "content", message)
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        # Content-part lists from some providers: keep the text parts only.
        return "".join(
            p.get("text", "") if isinstance(p, dict) else str(p)
            for p in content
        )
    return str(content)


def make_openai(model: str, settings: Settings, base_url: str, temperature: Optional[float] = None,
                params: Optional[Dict[str, Any]] = None) -> Runnable:
    """
    Build a runnable: {"messages": [...]} -> reply text.

    The SDK's own retries are disabled; retrying is done once, with jitter,
    by with_retry() so the attempt count is exact.
    """
    params = dict(params or {})

    kwargs: Dict[str, Any] = dict(
        model=model,
        api_key=settings.api_key,
        base_url=base_url,
        timeout=settings.timeout_sec,
        max_retries=0,
    )
    if temperature is not None:
        kwargs["temperature"] = temperature
    if "max_tokens" in params:
        kwargs["max_tokens"] = params.pop("max_tokens")

    response_format = params.pop("response_format", None)
    if params:
        kwargs["model_kwargs"] = params

    llm = ChatOpenAI(**kwargs)
    if response_format:
        llm = llm.bind(response_format=response_format)

    to_msgs = RunnableLambda(lambda x: x["messages"])
    to_text = RunnableLambda(_to_text)
    return to_msgs | llm | to_text


def with_retry(fn, settings: Settings):
    return retry(
        stop=stop_after_attempt(settings.max_retries + 1),
        wait=wait_random(0, settings.retry_jitter_sec),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )(fn)


def _base_url(settings: Settings, cfg: RouterConfig) -> str:
    return settings.base_url or cfg.base_url


def make_classifier(settings: Settings, cfg: RouterConfig):
    """Classifier callable for RoutingPolicy: prompt -> raw JSON text."""
    cls_cfg = cfg.classifier
    chain = make_openai(
        cls_cfg.model,
        settings,
        _base_url(settings, cfg),
        temperature=cls_cfg.temperature,
        params={"max_tokens": cls_cfg.max_tokens, "response_format": JSON_RESPONSE_FORMAT},
    )

    def _classify(prompt: str) -> Optional[str]:
        return chain.invoke({"messages": [{"role": "user", "content": prompt}]})

    return with_retry(_classify, settings)


def make_completer(settings: Settings, cfg: RouterConfig):
    """Completer callable for CompletionDispatcher: (model, messages) -> reply text."""
    base_url = _base_url(settings, cfg)
    chains = {model_id: make_openai(model_id, settings, base_url) for model_id in cfg.catalog.ids()}

    def _complete(model: str, messages: List[Dict[str, str]]) -> Optional[str]:
        chain = chains.get(model)
        if chain is None:
            # Uncatalogued ids (passthrough policy) are never cached.
            logger.info(f"Building one-off chain for uncatalogued model {model}")
            chain = make_openai(model, settings, base_url)
        return chain.invoke({"messages": messages})

    complete = with_retry(_complete, settings)
    complete.chains = chains
    return complete

"""
Model catalog and router configuration.

The catalog is loaded once from YAML at startup and is read-only afterwards,
so it can be shared across concurrent requests without locking.
"""

import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from graph.errors import ConfigError

ROOT = pathlib.Path(__file__).resolve().parents[1]
CONFIG_PATH = os.getenv("ROUTER_CONFIG", str(ROOT / "config" / "router_config.yaml"))

NOT_AVAILABLE = "N/A"
UNKNOWN_MODEL_POLICIES = ("substitute", "passthrough")


@dataclass(frozen=True)
class ModelCatalogEntry:
    """A downstream model the router may select."""
    id: str
    throughput: str = NOT_AVAILABLE
    time_to_first_token: str = NOT_AVAILABLE
    tokens_per_second: str = NOT_AVAILABLE
    cost: str = NOT_AVAILABLE
    # Prompt-facing descriptors
    best_for: str = ""
    strengths: str = ""
    limitations: str = ""
    use_when: str = ""
    # Routing rule
    intent: str = ""
    rule: str = ""
    priority: int = 100
    # Model is known to leak training artifacts into its replies
    sanitize: bool = False


@dataclass(frozen=True)
class PerformanceSnapshot:
    throughput: str
    time_to_first_token: str
    tokens_per_second: str
    cost: str
    actual_time_to_first_token: str

    @classmethod
    def from_entry(cls, entry: Optional[ModelCatalogEntry], elapsed_ms: float) -> "PerformanceSnapshot":
        actual = format_duration(elapsed_ms)
        if entry is None:
            return cls(NOT_AVAILABLE, NOT_AVAILABLE, NOT_AVAILABLE, NOT_AVAILABLE, actual)
        return cls(
            throughput=entry.throughput,
            time_to_first_token=entry.time_to_first_token,
            tokens_per_second=entry.tokens_per_second,
            cost=entry.cost,
            actual_time_to_first_token=actual,
        )


@dataclass(frozen=True)
class ClassifierConfig:
    model: str = "google/gemini-2.5-flash-lite"
    temperature: float = 0.1
    max_tokens: int = 100


@dataclass(frozen=True)
class ModelCatalog:
    entries: Dict[str, ModelCatalogEntry]
    default_model: str

    def __post_init__(self):
        if not self.entries:
            raise ConfigError("Model catalog is empty")
        if self.default_model not in self.entries:
            raise ConfigError(f"Default model '{self.default_model}' is not in the catalog")

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, model_id: str) -> Optional[ModelCatalogEntry]:
        return self.entries.get(model_id)

    @property
    def default(self) -> ModelCatalogEntry:
        return self.entries[self.default_model]

    def ids(self) -> List[str]:
        return list(self.entries)

    def by_priority(self) -> List[ModelCatalogEntry]:
        return sorted(self.entries.values(), key=lambda e: e.priority)


@dataclass(frozen=True)
class RouterConfig:
    catalog: ModelCatalog
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    base_url: str = "https://openrouter.ai/api/v1"
    unknown_model_policy: str = "substitute"
    sanitizer: Dict[str, Any] = field(default_factory=dict)


def format_duration(elapsed_ms: float) -> str:
    """Render milliseconds as seconds, e.g. 843.2 -> '0.84s'."""
    return f"{max(0.0, elapsed_ms) / 1000:.2f}s"


def _entry_from_dict(raw: Dict[str, Any]) -> ModelCatalogEntry:
    if not raw.get("id"):
        raise ConfigError(f"Catalog entry without id: {raw}")
    perf = raw.get("performance") or {}
    return ModelCatalogEntry(
        id=str(raw["id"]),
        throughput=str(perf.get("throughput", NOT_AVAILABLE)),
        time_to_first_token=str(perf.get("time_to_first_token", NOT_AVAILABLE)),
        tokens_per_second=str(perf.get("tokens_per_second", NOT_AVAILABLE)),
        cost=str(raw.get("cost", NOT_AVAILABLE)),
        best_for=raw.get("best_for", ""),
        strengths=raw.get("strengths", ""),
        limitations=raw.get("limitations", ""),
        use_when=raw.get("use_when", ""),
        intent=raw.get("intent", ""),
        rule=raw.get("rule", ""),
        priority=int(raw.get("priority", 100)),
        sanitize=bool(raw.get("sanitize", False)),
    )


def parse_router_config(cfg: Dict[str, Any]) -> RouterConfig:
    """Build a RouterConfig from an already-parsed YAML mapping."""
    if not isinstance(cfg, dict):
        raise ConfigError("Router config must be a mapping")

    entries: Dict[str, ModelCatalogEntry] = {}
    for raw in cfg.get("models") or []:
        entry = _entry_from_dict(raw)
        entries[entry.id] = entry

    default_model = cfg.get("default_model") or (next(iter(entries)) if entries else "")
    catalog = ModelCatalog(entries=entries, default_model=default_model)

    cls_cfg = cfg.get("classifier") or {}
    classifier = ClassifierConfig(
        model=cls_cfg.get("model", ClassifierConfig.model),
        temperature=float(cls_cfg.get("temperature", ClassifierConfig.temperature)),
        max_tokens=int(cls_cfg.get("max_tokens", ClassifierConfig.max_tokens)),
    )
    if classifier.model in catalog:
        raise ConfigError(f"Classifier model '{classifier.model}' must differ from the routing candidates")

    policy = cfg.get("unknown_model_policy", "substitute")
    if policy not in UNKNOWN_MODEL_POLICIES:
        raise ConfigError(f"unknown_model_policy must be one of {UNKNOWN_MODEL_POLICIES}, got '{policy}'")

    return RouterConfig(
        catalog=catalog,
        classifier=classifier,
        base_url=(cfg.get("provider") or {}).get("base_url", RouterConfig.base_url),
        unknown_model_policy=policy,
        sanitizer=cfg.get("sanitizer") or {},
    )


def load_router_config(path: Optional[str] = None) -> RouterConfig:
    path = path or CONFIG_PATH
    try:
        with open(path, "r") as f:
            cfg = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read router config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in router config {path}: {e}") from e
    return parse_router_config(cfg)

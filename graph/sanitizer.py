"""
Response sanitizer for models that leak training artifacts.

Some free-tier models emit fragments of their hidden reasoning channel
("analysis", "assistantfinal", "so answer:") in the visible reply. The
sanitizer removes a configurable table of such patterns and validates that
what is left is still a real answer.

Two stages:
1. clean() -> pattern removal, whitespace normalisation, quality gate
2. extract_answer() -> anchor on an answer marker and drop the preamble,
   used by the dispatcher only when tell-tale artifacts survive stage 1
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from graph.errors import ConfigError

logger = logging.getLogger("chat-router.sanitizer")

MIN_LENGTH = 10
# Floor for a marker-anchored answer that would replace a usable first pass.
SHORT_ANSWER_LENGTH = 5
MAX_PASSES = 8

_WHITESPACE = re.compile(r"\s+")
_EDGE_REMNANTS = re.compile(r"^[.,\s]+|[.,\s]+$")

DEFAULT_ARTIFACTS = [
    r"assistantfinal",
    r"analysis",
    r"user\s+wrote:",
    r"the\s+user\s+is\s+asking",
    r"they\s+are\s+asking",
    r"so\s+count:",
    r"so\s+answer:",
    r"probably\s+the\s+assistant\s+should",
    r"but\s+maybe\s+the\s+user\s+expects",
    r"just\s+answer:",
    r"short\.",
]
DEFAULT_TELLTALES = [
    "assistantfinal",
    "analysis",
    "the user",
    "user wrote",
    "they are asking",
    "the assistant should",
]
DEFAULT_ANSWER_MARKERS = [
    "assistantfinal",
    "Final answer:",
    "The answer is",
    "so answer:",
    "just answer:",
]


@dataclass(frozen=True)
class ArtifactRule:
    pattern: str
    replacement: str = ""

    def compile(self) -> "re.Pattern[str]":
        try:
            return re.compile(self.pattern, re.I)
        except re.error as e:
            raise ConfigError(f"Invalid artifact pattern {self.pattern!r}: {e}") from e


class ResponseSanitizer:
    def __init__(
        self,
        rules: Iterable[ArtifactRule],
        min_length: int = MIN_LENGTH,
        telltales: Sequence[str] = (),
        answer_markers: Sequence[str] = (),
        short_answer_length: int = SHORT_ANSWER_LENGTH,
    ):
        self.rules = tuple(rules)
        self._compiled = [(rule.compile(), rule.replacement) for rule in self.rules]
        self.min_length = min_length
        self.telltales = tuple(t.lower() for t in telltales)
        self.answer_markers = tuple(answer_markers)
        self.short_answer_length = short_answer_length

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "ResponseSanitizer":
        """Build from the `sanitizer` section of router_config.yaml."""
        cfg = cfg or {}
        raw_rules = cfg.get("artifacts")
        if raw_rules is None:
            rules = [ArtifactRule(p) for p in DEFAULT_ARTIFACTS]
        else:
            rules = []
            for item in raw_rules:
                if isinstance(item, str):
                    rules.append(ArtifactRule(item))
                elif isinstance(item, dict) and item.get("pattern"):
                    rules.append(ArtifactRule(item["pattern"], item.get("replacement") or ""))
                else:
                    raise ConfigError(f"Invalid artifact rule: {item!r}")
        return cls(
            rules,
            min_length=int(cfg.get("min_length", MIN_LENGTH)),
            telltales=cfg.get("telltales", DEFAULT_TELLTALES),
            answer_markers=cfg.get("answer_markers", DEFAULT_ANSWER_MARKERS),
            short_answer_length=int(cfg.get("short_answer_length", SHORT_ANSWER_LENGTH)),
        )

    # ---------- Stage 1 ----------
    def remove_artifacts(self, text: str) -> str:
        for pattern, replacement in self._compiled:
            text = pattern.sub(replacement, text)
        return text

    def strip(self, text: str) -> str:
        """Pattern removal plus whitespace/punctuation normalisation, to a fixed point."""
        for _ in range(MAX_PASSES):
            previous = text
            text = self.remove_artifacts(text)
            text = _WHITESPACE.sub(" ", text).strip()
            text = _EDGE_REMNANTS.sub("", text)
            if text == previous:
                break
        return text

    def clean(self, raw: Optional[str]) -> Optional[str]:
        if not raw:
            return raw

        cleaned = self.strip(raw)

        # Too short means the patterns ate the answer, not that the answer was short.
        if len(cleaned) < self.min_length:
            logger.info(json.dumps({
                "evt": "sanitize_reverted",
                "cleaned_len": len(cleaned),
                "min_length": self.min_length,
            }))
            return raw
        return cleaned

    # ---------- Stage 2 ----------
    def has_artifacts(self, text: Optional[str]) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(t in lowered for t in self.telltales)

    def find_artifacts(self, text: Optional[str]) -> List[str]:
        if not text:
            return []
        lowered = text.lower()
        return [t for t in self.telltales if t in lowered]

    def extract_answer(self, raw: Optional[str], first_pass: Optional[str] = None) -> Optional[str]:
        """
        Drop everything before the first answer marker found.

        Markers are tried in configured order. The marker-anchored segment must
        be longer than min_length; the marker itself is left for the artifact
        table to remove. When `first_pass` (the stage-1 result for `raw`) is a
        usable reply, a candidate shorter than min_length must still reach
        short_answer_length to replace it. Returns None when no usable answer
        is found.
        """
        if not raw:
            return None
        usable_first_pass = bool(first_pass) and first_pass != raw and len(first_pass) >= self.min_length
        lowered = raw.lower()
        for marker in self.answer_markers:
            idx = lowered.find(marker.lower())
            if idx == -1:
                continue
            anchored = raw[idx:]
            if len(anchored) <= self.min_length:
                continue
            candidate = self.strip(anchored)
            if not candidate:
                continue
            if usable_first_pass and len(candidate) < min(self.min_length, self.short_answer_length):
                continue
            return candidate
        return None


def default_sanitizer() -> ResponseSanitizer:
    return ResponseSanitizer.from_config(None)


def clean_model_response(raw: Optional[str]) -> Optional[str]:
    """Stage-1 clean with the built-in artifact table."""
    return _DEFAULT.clean(raw)


_DEFAULT = default_sanitizer()

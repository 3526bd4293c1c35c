from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

from idle_monitor.logging_config import get_logger

logger = get_logger("patterns")

DEFAULT_PATTERNS_PATH = Path(__file__).resolve().parents[1] / "knowledge" / "patterns.yaml"


@dataclass(frozen=True)
class PatternTable:
    """Compiled detection tables. Classification is a pure function over these."""

    bot_patterns: tuple[re.Pattern, ...] = ()
    ender_patterns: tuple[re.Pattern, ...] = ()
    internal_keywords: tuple[str, ...] = ()
    internal_emojis: tuple[str, ...] = ()
    attendants: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PatternTable":
        return cls(
            bot_patterns=_compile_all(data.get("bot_patterns"), re.IGNORECASE),
            ender_patterns=_compile_all(data.get("ender_patterns"), re.IGNORECASE),
            internal_keywords=tuple(
                str(item).strip().lower() for item in _as_list(data.get("internal_keywords")) if str(item).strip()
            ),
            internal_emojis=tuple(str(item) for item in _as_list(data.get("internal_emojis")) if str(item)),
            attendants={
                str(k): str(v) for k, v in (data.get("attendants") or {}).items() if k and v
            }
            if isinstance(data.get("attendants"), dict)
            else {},
        )

    def attendant_name(self, agent_id: Optional[str]) -> Optional[str]:
        if not agent_id:
            return None
        return self.attendants.get(agent_id)


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _compile_all(patterns: Any, flags: int) -> tuple[re.Pattern, ...]:
    compiled = []
    for pattern in _as_list(patterns):
        try:
            compiled.append(re.compile(str(pattern), flags))
        except re.error as e:
            logger.error(f"Skipping invalid pattern {pattern!r}: {e}")
    return tuple(compiled)


@lru_cache(maxsize=4)
def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_pattern_table(path: Optional[str] = None) -> PatternTable:
    """Load the pattern table from ``path``, falling back to the bundled file."""
    if path:
        try:
            data = _load_yaml(Path(path))
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                "Failed to load pattern table, using defaults",
                extra={"context": {"path": path, "error": str(e)}},
            )
            data = {}
        if data:
            return PatternTable.from_dict(data)
        logger.error("Pattern table empty or missing, using defaults", extra={"context": {"path": path}})

    return PatternTable.from_dict(_load_yaml(DEFAULT_PATTERNS_PATH))

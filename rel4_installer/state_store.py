"""Run record: what the last invocation ran, with which config, and how it failed.

Diagnostic only. Nothing in the pipeline reads it back to decide what to skip.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def _yaml():
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("YAML run record requested but PyYAML is not available.") from e
    return yaml


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) == "json":
        p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    else:
        p.write_text(_yaml().safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")
    logger.debug("Run record written to %s", p)


def new_state() -> Dict[str, Any]:
    return {
        "version": 1,
        "config": {},
        "execution": {
            "current_step": None,
            "decisions": {},
            "errors": [],
            "summary": {},
        },
    }

"""JSON prompt catalog with ``string.Template`` placeholders.

The catalog path comes from ``PROMPTS_FILE`` (default ``app/prompts/prompts.json``).
Each file is re-read when its mtime changes.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from app.config import settings

DEFAULT_PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# path -> (mtime_ns, catalog)
_catalogs: dict[Path, tuple[int, dict[str, Any]]] = {}


def catalog_path() -> Path:
    return Path(settings.prompts_file) if settings.prompts_file else DEFAULT_PROMPTS_PATH


def _load_catalog(path: Path) -> dict[str, Any]:
    mtime_ns = path.stat().st_mtime_ns
    cached = _catalogs.get(path)
    if cached is not None and cached[0] == mtime_ns:
        return cached[1]

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {path}")
    _catalogs[path] = (mtime_ns, payload)
    return payload


def get_prompt_template(key: str) -> Template:
    """Look up a dotted key such as ``aggregation.metric_search_prompt``."""
    node: Any = _load_catalog(catalog_path())
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return Template(node)


def render_prompt(key: str, **values: Any) -> str:
    template = get_prompt_template(key)
    missing = sorted(set(template.get_identifiers()) - values.keys())
    if missing:
        raise KeyError(f"Missing template value(s) {', '.join(missing)} for prompt '{key}'")
    return template.substitute(values)

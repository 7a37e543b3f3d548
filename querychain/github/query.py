"""
GitHub Search Query Builder
===========================
Turns criteria dicts into GitHub search syntax.

    {"text": "http server", "language": "go", "stars": ">100"}
    -> 'http server language:go stars:>100'

`text` (or `q`) is free text; `sort` and `order` are request parameters,
not qualifiers. List values repeat the qualifier.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

FREE_TEXT_KEYS = ("text", "q")
PARAM_KEYS = ("sort", "order")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    if " " in text and not (text.startswith('"') and text.endswith('"')):
        return f'"{text}"'
    return text


def build_search_query(criteria: Mapping[str, Any], repo: Optional[str] = None) -> str:
    """Build the `q` parameter for a search endpoint.

    Args:
        criteria: Free text and qualifiers.
        repo: Optional `owner/name` to scope the search to.
    """
    parts = []
    for key in FREE_TEXT_KEYS:
        text = criteria.get(key)
        if text:
            parts.append(str(text).strip())

    for key, value in criteria.items():
        if key in FREE_TEXT_KEYS or key in PARAM_KEYS:
            continue
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        for v in values:
            parts.append(f"{key}:{_format_value(v)}")

    if repo:
        parts.append(f"repo:{repo}")

    query = " ".join(p for p in parts if p)
    if not query:
        raise ValueError("Search criteria produced an empty query")
    return query


def search_params(criteria: Mapping[str, Any]) -> Dict[str, str]:
    """Extract sort/order request parameters from criteria."""
    params: Dict[str, str] = {}
    for key in PARAM_KEYS:
        value = criteria.get(key)
        if value:
            params[key] = str(value)
    return params

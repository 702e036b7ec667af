"""Helper utilities for accessing configuration sections regardless of the backing loader."""
from __future__ import annotations

from typing import Any, Dict


def get_config_section(source: Any, section: str) -> Dict:
    """Return a dictionary section from Config, SectionProxy, or plain dict objects."""
    if source is None:
        return {}

    if isinstance(source, dict):
        candidate = source.get(section, {})
        return candidate if isinstance(candidate, dict) else {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, {})
        if isinstance(candidate, dict):
            return candidate
        to_dict = getattr(candidate, 'to_dict', None)
        if callable(to_dict):
            return to_dict()

    return {}


def is_unresolved(value: Any) -> bool:
    """True for empty values and ``${VAR}`` placeholders left behind by env expansion."""
    if value is None:
        return True
    text = str(value).strip()
    return not text or (text.startswith('${') and text.endswith('}'))

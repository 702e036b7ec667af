import os
import re
from pathlib import Path
from collections.abc import Mapping
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .settings import ConfigurationError

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent / 'config.yaml'

# ${NAME} or ${NAME:-fallback}; unknown names without a fallback are left verbatim
_PLACEHOLDER = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')


def expand_env(text: str) -> str:
    def _sub(match: 're.Match[str]') -> str:
        name, fallback = match.group(1), match.group(2)
        value = os.getenv(name)
        if value is not None:
            return value
        return fallback if fallback is not None else match.group(0)

    return _PLACEHOLDER.sub(_sub, text)


class SectionProxy(Mapping):
    """Read-only view over one YAML mapping; nested mappings come back wrapped."""

    def __init__(self, data: Dict[str, Any]):
        self._data = data or {}

    def __getitem__(self, key: str) -> Any:
        return _wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError as exc:
            raise AttributeError(f"Config key '{name}' not found") from exc

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_dict(self) -> Dict[str, Any]:
        return self._data


def _wrap(value: Any) -> Any:
    return SectionProxy(value) if isinstance(value, dict) else value


class Config(SectionProxy):
    """YAML configuration with environment placeholders resolved at load time.

    The path defaults to ``TRADER_CONFIG`` or the bundled ``config.yaml``.
    ``get`` hands back plain dicts so sections can be passed to
    :func:`config.utils.get_config_section` unchanged.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or os.getenv('TRADER_CONFIG') or DEFAULT_CONFIG_PATH)
        super().__init__(self._load_config())

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found at {self.config_path}")
        with self.config_path.open('r', encoding='utf-8') as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Error parsing YAML configuration: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{self.config_path} must contain a mapping at the top level")
        return self._resolve_env_vars(raw)

    def _resolve_env_vars(self, node: Any) -> Any:
        if isinstance(node, dict):
            return {key: self._resolve_env_vars(value) for key, value in node.items()}
        if isinstance(node, list):
            return [self._resolve_env_vars(item) for item in node]
        if isinstance(node, str) and '${' in node:
            return expand_env(node)
        return node

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def reload(self) -> None:
        self._data = self._load_config()


config_loader = Config()

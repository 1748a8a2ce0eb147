"""
APIConfig — YAML loader for upstream endpoint definitions.

Single Responsibility: parse ``upstreams.yml`` into typed dataclasses.
No HTTP calls, no caching, no business logic.

Usage::

    from opsboard.services.broker.api_config import api_config_loader

    ep = api_config_loader.get("argus_status")   # APIEndpoint | None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "upstreams.yml"


# ── Dataclass ────────────────────────────────────────────────────

@dataclass(frozen=True)
class APIEndpoint:
    """Immutable definition of one upstream endpoint."""
    api_id: str
    name: str
    base_url: str
    path: str = ""
    method: str = "GET"
    query_param: str = ""
    auth_header: Optional[str] = None
    auth_env_var: Optional[str] = None
    timeout: float = 10.0
    enabled: bool = True

    @property
    def url(self) -> str:
        return self.base_url.rstrip("/") + self.path


# ── Loader ───────────────────────────────────────────────────────

class APIConfigLoader:
    """
    Loads and caches the parsed endpoint definitions from YAML.

    The YAML is read once on first access.
    """

    def __init__(self, config_path: Path = _CONFIG_PATH):
        self._config_path = config_path
        self._endpoints: Dict[str, APIEndpoint] = {}
        self._loaded = False

    def get(self, api_id: str) -> Optional[APIEndpoint]:
        self._ensure_loaded()
        return self._endpoints.get(api_id)

    def list_ids(self) -> List[str]:
        self._ensure_loaded()
        return list(self._endpoints.keys())

    # ── Internal ─────────────────────────────────────────────

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._load()

    def _load(self) -> None:
        self._loaded = True
        if not self._config_path.exists():
            logger.warning(f"[APIConfig] Config file not found: {self._config_path}")
            return

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            logger.error(f"[APIConfig] YAML parse error: {exc}")
            return

        for api_id, definition in raw.items():
            if not isinstance(definition, dict):
                logger.warning(f"[APIConfig] Ignoring non-mapping entry '{api_id}'")
                continue
            try:
                self._endpoints[api_id] = _parse_endpoint(api_id, definition)
            except (KeyError, ValueError, TypeError) as exc:
                logger.error(f"[APIConfig] Skipping invalid entry '{api_id}': {exc}")

        logger.info(f"[APIConfig] Loaded {len(self._endpoints)} upstream endpoint(s)")


def _parse_endpoint(api_id: str, definition: Dict[str, Any]) -> APIEndpoint:
    """One YAML mapping → :class:`APIEndpoint`; ``base_url`` is required."""
    return APIEndpoint(
        api_id=api_id,
        name=definition.get("name", api_id),
        base_url=definition["base_url"],
        path=definition.get("path", ""),
        method=str(definition.get("method", "GET")).upper(),
        query_param=definition.get("query_param", ""),
        auth_header=definition.get("auth_header"),
        auth_env_var=definition.get("auth_env_var"),
        timeout=float(definition.get("timeout", 10)),
        enabled=bool(definition.get("enabled", True)),
    )


# ── Singleton ────────────────────────────────────────────────────
api_config_loader = APIConfigLoader()

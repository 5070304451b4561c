from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"
_MISSING = object()

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "SCRAPBOOK_STORAGE_BACKEND": "storage.backend",
    "SCRAPBOOK_BUCKET": "storage.bucket",
    "SCRAPBOOK_S3_ENDPOINT": "storage.endpoint_url",
    "SCRAPBOOK_S3_REGION": "storage.region",
    "SCRAPBOOK_ARTIFACT_DIR": "storage.local_root",
    "SCRAPBOOK_PUBLIC_BASE_URL": "storage.public_base_url",
    "SCRAPBOOK_SIGNING_SECRET": "storage.signing_secret",
    "SCRAPBOOK_DB_PATH": "database.path",
    "SCRAPBOOK_BATCH_SIZE": "pipeline.batch_size",
    "SCRAPBOOK_MAX_WORKERS": "pipeline.max_workers",
    "RENDER_BASE_URL": "render.base_url",
    "RENDER_TOKEN_SECRET": "render.token_secret",
    "FULFILLMENT_API_BASE": "fulfillment.api_base",
    "FULFILLMENT_CLIENT_ID": "fulfillment.client_id",
    "FULFILLMENT_CLIENT_SECRET": "fulfillment.client_secret",
    "FULFILLMENT_CONTACT_EMAIL": "fulfillment.contact_email",
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def _coerce(current: Any, raw: str) -> Any:
    if isinstance(current, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _env_overrides(base: DictConfig) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, key in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        overrides[key] = _coerce(OmegaConf.select(base, key), raw)
    return overrides


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build runtime settings: packaged defaults, then environment, then overrides.

    Args:
        overrides: Nested dict or dotted-key dict of explicit values

    Returns:
        Struct-mode DictConfig; unknown keys raise on merge
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    for key, value in _env_overrides(base).items():
        OmegaConf.update(base, key, value, merge=False)

    if overrides:
        dotted = {k: v for k, v in overrides.items() if "." in k}
        nested = {k: v for k, v in overrides.items() if "." not in k}
        if nested:
            base = OmegaConf.merge(base, OmegaConf.create(nested))  # type: ignore[assignment]
            OmegaConf.set_struct(base, True)
        for key, value in dotted.items():
            if OmegaConf.select(base, key, default=_MISSING) is _MISSING:
                raise KeyError(f"Unknown setting: {key}")
            OmegaConf.update(base, key, value, merge=False)
    return base


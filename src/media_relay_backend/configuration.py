from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import tempfile
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

# Load environment variables from .env file before any ${oc.env:...} is resolved
load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)
    # Replacement terms are free-form keys supplied by the deployment
    OmegaConf.set_struct(base.titles.replacements, False)

    override_config = OmegaConf.create(overrides or {})
    merged = DictConfig(OmegaConf.merge(base, override_config))
    return merged


def resolve_temp_dir(config: DictConfig) -> Path:
    temp_dir = config.transcode.temp_dir
    return Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())


def is_storage_configured(config: DictConfig) -> bool:
    storage = config.storage
    return all([storage.endpoint, storage.access_key_id, storage.secret_access_key, storage.bucket, storage.public_base_url])

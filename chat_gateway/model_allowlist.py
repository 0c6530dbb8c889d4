"""
Model allowlist read from the LiteLLM proxy config (model_list[].model_name).

An empty or unreadable list allows every model. This fail-open default is intentional
for the demo; deployments that need a closed list must ship a non-empty litellm_config.yaml.
"""
import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


def load_allowed_models(path: str | Path) -> list[str]:
    """Model names from model_list, falling back to litellm_params.model. [] if the file can't be used."""
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            config = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load LiteLLM config from %s (%s); allowing any model", path, e)
        return []
    if not isinstance(config, dict):
        logger.warning("LiteLLM config root is not a mapping: %s; allowing any model", path)
        return []

    models = []
    for entry in config.get("model_list") or []:
        if not isinstance(entry, dict):
            continue
        name = entry.get("model_name") or (entry.get("litellm_params") or {}).get("model")
        if name:
            models.append(str(name))
    return models


class ModelAllowlist:
    def __init__(self, models: list[str]) -> None:
        self.models = tuple(models)
        if not self.models:
            logger.warning("Model allowlist is empty; any model requested by callers will be forwarded")

    @classmethod
    def from_file(cls, path: str | Path) -> "ModelAllowlist":
        return cls(load_allowed_models(path))

    def is_allowed(self, model: str) -> bool:
        return not self.models or model in self.models

"""
Provider construction from configuration.
"""

import logging
from typing import Dict, Type

from ai_automod.config.loader import AutomodConfig
from .base import AIProvider
from .claude_provider import ClaudeProvider
from .openai_provider import OpenAICompatibleProvider, OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Dict[str, Type[AIProvider]] = {
    "claude": ClaudeProvider,
    "openai": OpenAIProvider,
    "openai-compatible": OpenAICompatibleProvider,
}


def build_providers(config: AutomodConfig) -> Dict[str, AIProvider]:
    """Instantiate every enabled provider that has a credential.

    Args:
        config: Loaded configuration

    Returns:
        Providers keyed by provider id; empty when none are usable
    """
    providers: Dict[str, AIProvider] = {}
    for provider_id, provider_config in config.providers.items():
        if not provider_config.usable:
            logger.info("Provider %s disabled or missing credentials, skipping", provider_id)
            continue
        providers[provider_id] = PROVIDER_CLASSES[provider_id](provider_config, retry=config.retry)
        logger.info("Provider %s ready (model=%s)", provider_id, provider_config.model)
    return providers

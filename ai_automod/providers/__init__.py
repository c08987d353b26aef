"""
AI provider adapters behind a common interface.
"""

from .base import AIProvider, ProviderResponse, RawResponse
from .factory import build_providers

__all__ = ["AIProvider", "ProviderResponse", "RawResponse", "build_providers"]

"""
Character studio generator clients
"""
from typing import Dict, List

from .base import BaseGenerator
from .gemini import GeminiGenerator
from .gemini_rest import GeminiRestGenerator

GENERATORS = {
    "gemini": GeminiGenerator,
    "gemini-rest": GeminiRestGenerator,
}


def get_generator(provider: str = "gemini") -> BaseGenerator:
    """
    Factory function to get the appropriate generator.

    Args:
        provider: 'gemini' (SDK) or 'gemini-rest' (plain HTTPS)

    Returns:
        BaseGenerator instance
    """
    provider = provider.lower()
    if provider not in GENERATORS:
        raise ValueError(f"Unknown provider: {provider}. Use one of: {', '.join(GENERATORS)}.")
    return GENERATORS[provider]()


def list_providers() -> List[Dict]:
    providers = []
    for name, cls in GENERATORS.items():
        generator = cls()
        providers.append({
            "name": name,
            "model": generator.model,
            "configured": generator.is_configured(),
            "missing": generator.get_missing_config(),
        })
    return providers


__all__ = ["get_generator", "list_providers", "BaseGenerator", "GeminiGenerator", "GeminiRestGenerator"]

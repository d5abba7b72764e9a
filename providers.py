"""
Provider resolution: stored credential + model id -> model adapter.
Resolution fails closed, before any model call is attempted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from config import FREE_PROVIDER_ID
from model_service import ChatModel, AnthropicModel, BedrockModel, OpenAIChatModel
from models_catalog import ModelsCatalog, CatalogUnavailableError, models_catalog
from sessions import ProviderStore

logger = logging.getLogger(__name__)

GOOGLE_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google", "bedrock", FREE_PROVIDER_ID)


class ProviderError(Exception):
    """Base class for resolution failures."""


class ConfigurationError(ProviderError):
    """Missing or empty provider credential."""


class UnsupportedProviderError(ProviderError):
    """Unknown provider identifier."""


@dataclass
class ResolvedProvider:
    model: ChatModel
    provider_id: str
    model_id: str


def resolve_provider(
    provider_id: str,
    model_id: str,
    store: Optional[ProviderStore] = None,
    catalog: Optional[ModelsCatalog] = None,
) -> ResolvedProvider:
    """Look up the credential and build the model handle.

    Raises ConfigurationError or UnsupportedProviderError.
    """
    if provider_id == FREE_PROVIDER_ID:
        return _resolve_free(model_id, catalog or models_catalog)

    record = (store or ProviderStore()).get(provider_id)
    if not record:
        raise ConfigurationError(f"Provider '{provider_id}' not configured. Go to Settings.")
    api_key = (record.get("api_key") or "").strip()
    if not api_key:
        raise ConfigurationError(f"API key not configured for {provider_id}. Go to Settings.")

    if provider_id == "anthropic":
        model: ChatModel = AnthropicModel(model_id, api_key=api_key)
    elif provider_id == "openai":
        model = OpenAIChatModel(model_id, api_key=api_key, provider_id="openai")
    elif provider_id == "google":
        model = OpenAIChatModel(model_id, api_key=api_key, base_url=GOOGLE_OPENAI_BASE_URL,
                                provider_id="google")
    elif provider_id == "bedrock":
        # the stored credential names the AWS profile
        model = BedrockModel(model_id, profile=api_key)
    else:
        raise UnsupportedProviderError(f"Unsupported provider: {provider_id}")

    logger.info(f"Resolved provider {provider_id} with model {model_id}")
    return ResolvedProvider(model=model, provider_id=provider_id, model_id=model_id)


def _resolve_free(model_id: str, catalog: ModelsCatalog) -> ResolvedProvider:
    """Keyless OpenAI-compatible gateway; base URL comes from the catalog."""
    try:
        free = catalog.free_config()
    except CatalogUnavailableError as e:
        raise ConfigurationError(
            f"Provider '{FREE_PROVIDER_ID}' is unavailable ({e}). Go to Settings."
        ) from e
    base_url = free.get("baseURL")
    if not base_url:
        raise ConfigurationError(f"Provider '{FREE_PROVIDER_ID}' not configured. Go to Settings.")
    model = OpenAIChatModel(model_id, api_key="public", base_url=base_url, provider_id=FREE_PROVIDER_ID)
    return ResolvedProvider(model=model, provider_id=FREE_PROVIDER_ID, model_id=model_id)


def mask_key(api_key: str) -> str:
    """Show only the last 4 characters of a credential."""
    if len(api_key or "") <= 4:
        return "****"
    return "*" * (len(api_key) - 4) + api_key[-4:]

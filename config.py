"""
Configuration module for Coodeen.
Handles environment variables, provider model lists and application directories.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration (Bedrock provider)"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    profile_name: str = os.getenv("AWS_PROFILE", "")


@dataclass
class ModelConfig:
    """Generation settings shared by every provider adapter"""
    max_tokens: int = int(os.getenv("MAX_TOKENS", "8192"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "")) if os.getenv("TEMPERATURE") else None


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Coodeen"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    data_dir: str = os.getenv("COODEEN_HOME", os.path.join(os.path.expanduser("~"), ".coodeen"))
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "3001"))
    cors_origin: str = os.getenv("CORS_ORIGIN", "http://localhost:5173")
    # Hard ceiling of tool-augmented reasoning steps per run
    max_steps: int = int(os.getenv("MAX_STEPS", "25"))
    # Chain an "execute the plan" run after plan_exit
    auto_execute_plan: bool = os.getenv("AUTO_EXECUTE_PLAN", "true").lower() == "true"
    models_config_url: str = os.getenv(
        "MODELS_CONFIG_URL",
        "https://raw.githubusercontent.com/zahinafsar/coodeen/main/models.json",
    )
    models_cache_ttl: float = float(os.getenv("MODELS_CACHE_TTL", "300"))
    models_fetch_timeout: float = float(os.getenv("MODELS_FETCH_TIMEOUT", "10"))


@dataclass
class ToolConfig:
    """Limits and endpoints for the network-bound tools"""
    webfetch_timeout: float = float(os.getenv("WEBFETCH_TIMEOUT", "30"))
    webfetch_max_timeout: float = float(os.getenv("WEBFETCH_MAX_TIMEOUT", "120"))
    webfetch_max_bytes: int = 5 * 1024 * 1024
    websearch_timeout: float = float(os.getenv("WEBSEARCH_TIMEOUT", "25"))
    codesearch_timeout: float = float(os.getenv("CODESEARCH_TIMEOUT", "30"))
    imagefetch_timeout: float = float(os.getenv("IMAGEFETCH_TIMEOUT", "30"))
    imagefetch_max_bytes: int = 20 * 1024 * 1024
    exa_mcp_url: str = os.getenv("EXA_MCP_URL", "https://mcp.exa.ai/mcp")
    grep_max_matches: int = 100


# ============================================================
# Known models per provider. The "opencode" free provider has no
# static list; its models come from the remote catalog.
# ============================================================
PROVIDER_MODELS: Dict[str, List[str]] = {
    "anthropic": [
        "claude-sonnet-4-20250514",
        "claude-opus-4-20250514",
        "claude-haiku-4-20250414",
        "claude-3.5-sonnet-20241022",
    ],
    "openai": [
        "gpt-4.1",
        "gpt-4.1-mini",
        "gpt-4.1-nano",
        "gpt-4o",
        "gpt-4o-mini",
        "o3",
        "o3-mini",
        "o4-mini",
    ],
    "google": [
        "gemini-2.5-pro",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
    ],
    "bedrock": [
        "us.anthropic.claude-sonnet-4-20250514-v1:0",
        "us.anthropic.claude-opus-4-20250514-v1:0",
        "us.anthropic.claude-3-5-haiku-20241022-v1:0",
    ],
}

FREE_PROVIDER_ID = "opencode"

# Substrings of model ids that accept image input
VISION_MODEL_PATTERNS: List[str] = [
    "claude",
    "gpt-4o",
    "gpt-4.1",
    "o3",
    "o4",
    "gemini",
]


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()
tool_config = ToolConfig()


def get_data_dir() -> str:
    return os.path.expanduser(app_config.data_dir)


def get_plans_dir() -> str:
    return os.path.join(get_data_dir(), "plans")


def get_skills_dir() -> str:
    return os.path.join(get_data_dir(), "skills")


def get_sessions_dir() -> str:
    return os.path.join(get_data_dir(), "sessions")


def get_providers_file() -> str:
    return os.path.join(get_data_dir(), "providers.json")


def get_settings_file() -> str:
    return os.path.join(get_data_dir(), "config.json")


def get_provider_models(provider_id: str) -> List[str]:
    """Static model list for a provider (empty for unknown ids)"""
    return list(PROVIDER_MODELS.get(provider_id, []))


def is_vision_model(model_id: str) -> bool:
    """Fallback vision check by model-id pattern"""
    lowered = (model_id or "").lower()
    return any(p in lowered for p in VISION_MODEL_PATTERNS)

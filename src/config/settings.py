"""Application settings loaded from environment variables via pydantic-settings.

Settings are read from two sources, in priority order:

  1. Environment variables, e.g. ``ANTHROPIC_API_KEY=sk-ant-...``
  2. A ``.env`` file in the working directory (local development)

Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Empty strings
mean "not configured"; the factories in ``src/main.py`` skip providers whose
credentials are empty.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """posterExtract settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Vision LLM Providers ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, etc.)
    openai_vision_model: str = ""
    anthropic_api_key: str = ""
    anthropic_vision_model: str = ""
    ollama_base_url: str = ""
    ollama_vision_model: str = ""

    # === Reference Databases ===
    discogs_user_token: str = ""
    musicbrainz_app_name: str = "posterExtract"
    musicbrainz_app_version: str = "0.1.0"
    musicbrainz_contact: str = ""

    # === Session Persistence ===
    session_db_path: str = "data/session_state.db"

    # === App Config ===
    config_path: str = "config/config.yaml"
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM providers that have credentials or a URL configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers

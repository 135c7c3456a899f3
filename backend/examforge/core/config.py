"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # Rasterization: external pdftoppm subprocess
    # ------------------------------------------------------------------
    rasterizer_binary:      str = "pdftoppm"
    raster_dpi:             int = 200     # default for explicit rasterize() calls
    vision_raster_dpi:      int = 300     # used by vision-mode jobs when no DPI is given
    raster_timeout_seconds: float = 120.0
    raster_tmp_prefix:      str = "examforge-pdf-"

    # ------------------------------------------------------------------
    # Page image processing
    # ------------------------------------------------------------------
    crop_top_percent:    float = 0.0
    crop_bottom_percent: float = 0.0
    stitch_spacing_px:   int = 0

    # Tall single images (phone screenshots of whole papers) are sliced
    tall_image_max_height_px:   int = 3000
    tall_image_slice_height_px: int = 2000
    tall_image_overlap_px:      int = 400

    # ------------------------------------------------------------------
    # Text extraction + chunking
    # ------------------------------------------------------------------
    header_footer_band: float = 0.10   # fraction of a page's vertical range

    chunk_max_chars:             int = 6000
    chunk_overlap_chars:         int = 300
    chunk_boundary_window_chars: int = 1200   # how far back from the limit to look for a paragraph break
    incomplete_widen_chars:      int = 600

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------
    default_extraction_mode:  str = "vision"   # "vision" | "text"
    unit_timeout_seconds:     float = 180.0
    unit_max_attempts:        int = 2
    unit_retry_delay_seconds: float = 1.0
    job_timeout_seconds:      float = 1800.0

    # Job registry
    job_ttl_seconds:            float = 900.0   # kept this long after the terminal event
    job_sweep_interval_seconds: float = 60.0

    # Streaming
    sse_keepalive_seconds: float = 15.0

    # Upload
    max_upload_bytes: int = 50 * 1024 * 1024

    # ------------------------------------------------------------------
    # LLM providers
    # ------------------------------------------------------------------
    default_ai_provider: str = "openai"   # "openai" | "azure_openai" | "ollama"

    openai_api_key:  str = ""
    openai_base_url: str = ""             # empty = api.openai.com; set for OpenAI-compatible hosts
    llm_model:       str = "gpt-4o-mini"
    vision_model:    str = "gpt-4o"
    llm_temperature: float = 0.0
    llm_max_tokens:  int = 4096

    # Azure OpenAI
    azure_openai_api_key:     str = ""
    azure_openai_endpoint:    str = ""
    azure_openai_deployment:  str = "gpt-4o"
    azure_openai_api_version: str = "2024-08-01-preview"

    # Ollama (local / air-gapped)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model:    str = "llama3.2-vision"

    # ------------------------------------------------------------------
    # Question store (CRUD layer)
    # ------------------------------------------------------------------
    question_store_url:             str = ""   # empty = in-process store
    question_store_token:           str = ""
    question_store_timeout_seconds: float = 30.0

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

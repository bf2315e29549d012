from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # API Keys
    OPENAI_API_KEY: Optional[str] = None
    UNSPLASH_ACCESS_KEY: Optional[str] = None

    # Model Configuration
    RESEARCH_MODEL: str = "gpt-5-mini-2025-08-07"
    OUTLINE_MODEL: str = "gpt-5-mini-2025-08-07"
    WRITER_MODEL: str = "gpt-5-mini-2025-08-07"
    CRITIC_MODEL: str = "gpt-5-nano-2025-08-07"
    QUALITY_CONTROL_MODEL: str = "gpt-5-nano-2025-08-07"
    VALIDATION_MODEL: str = "gpt-5-nano-2025-08-07"
    GENERATOR_TEMPERATURE: float = 0.7
    OUTLINE_TEMPERATURE: float = 0.1
    VALIDATOR_TEMPERATURE: float = 0.3

    # Per-call timeouts (seconds)
    RESEARCH_TIMEOUT: float = 60.0
    OUTLINE_TIMEOUT: float = 30.0
    SECTION_DRAFT_TIMEOUT: float = 45.0
    CRITIQUE_TIMEOUT: float = 20.0
    QUALITY_CONTROL_TIMEOUT: float = 30.0
    VALIDATION_TIMEOUT: float = 30.0
    LINK_CHECK_TIMEOUT: float = 10.0
    IMAGE_SEARCH_TIMEOUT: float = 15.0

    # Pipeline Configuration
    PHASE_MAX_ATTEMPTS: int = 2
    PHASE_BACKOFF_BASE: float = 1.0
    PHASE_BACKOFF_FACTOR: float = 4.0
    OUTLINE_SCHEMA_RETRIES: int = 2
    MAX_REWRITES: int = 2
    MAX_QC_RUNS: int = 2
    SECTION_APPROVAL_THRESHOLD: float = 7.0
    TEMPLATE_COMPLIANCE_THRESHOLD: float = 0.85

    # Article Configuration
    DEFAULT_MAX_WORDS: int = 1800
    DEFAULT_TONE: str = "professional and informative"
    DEFAULT_LANGUAGE: str = "en"
    SITE_DOMAIN: Optional[str] = None
    MIN_INTERNAL_LINKS: int = 0
    MIN_EXTERNAL_LINKS: int = 2
    MIN_CITED_SOURCES: int = 2
    MAX_IMAGES: int = 3
    MIN_FAQ_ITEMS: int = 3
    MAX_FAQ_ITEMS: int = 6
    MAX_SCREENSHOTS: int = 3
    META_DESCRIPTION_MAX: int = 160

    # Database
    DATABASE_PATH: str = "./seo_writer.db"

    # Logging
    LOG_FILE: str = "./article_generation.log"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()

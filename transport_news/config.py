"""Configuration management for the transport news pipeline."""

import re
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sources.yaml"


class ConfigError(ValueError):
    """Raised when the pipeline configuration file is invalid."""


class SourceConfig(BaseModel):
    """News source configuration."""
    model_config = ConfigDict(frozen=True)

    name: str
    url: HttpUrl
    priority: int = 5
    selector: str | None = None
    title_selector: str | None = None
    link_selector: str | None = None
    summary_selector: str | None = None
    category: str = "industry"
    enabled: bool = True

    @property
    def host(self) -> str:
        return self.url.host or ""


class Settings(BaseSettings):
    """Main application settings."""

    # ── Fetching ───────────────────────────────────────────────────────────
    fetch_timeout: float = Field(30.0, description="Per-request timeout in seconds")
    retry_attempts: int = Field(3, description="Retries after the first failed fetch")
    retry_backoff: float = Field(2.0, description="Exponential backoff factor between retries")
    delay_between_sources: float = Field(3.0, description="Pause between sources in seconds")
    user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        description="User agent for web requests",
    )

    # ── Extraction & Validation ────────────────────────────────────────────
    max_articles_per_source: int = Field(20, description="Candidates kept per source page")
    min_title_length: int = Field(15, description="Shortest acceptable title")
    max_title_length: int = Field(200, description="Longest acceptable title")
    min_relevance_score: int = Field(3, description="Relevance floor for acceptance")
    max_relevance_score: int = Field(20, ge=0, le=20, description="Relevance score cap")
    max_article_age_days: int = Field(7, description="Drop scraped articles older than this")

    # ── Deduplication ──────────────────────────────────────────────────────
    title_similarity_threshold: float = Field(0.85, description="Title similarity threshold")
    content_similarity_threshold: float = Field(0.75, description="Title+summary similarity threshold")
    phrase_overlap_threshold: float = Field(0.3, description="Key phrase overlap ratio threshold")
    fuzzy_archive_dedup: bool = Field(
        False, description="Also apply similarity checks against recent archive articles"
    )

    # ── Issue Selection ────────────────────────────────────────────────────
    lookback_days: int = Field(7, description="Archive lookback window for issue selection")
    min_articles_per_issue: int = Field(3, description="Abort an issue below this many articles")
    articles_per_issue: int = Field(5, description="Articles handed to the rewriter per issue")

    # ── Storage ────────────────────────────────────────────────────────────
    data_dir: Path = Field(Path("./data"), description="Data directory")
    database_name: str = Field("articles.db", description="SQLite archive file name")
    config_path: Path = Field(DEFAULT_CONFIG_PATH, description="Pipeline YAML configuration")

    # ── Rewriting ──────────────────────────────────────────────────────────
    openai_api_key: str | None = Field(None, description="OpenAI API key for rewriting")
    llm_model: str = Field("gpt-4o-mini", description="Rewriting model")
    llm_temperature: float = Field(0.1, description="Rewriting temperature")
    llm_max_tokens: int = Field(4000, description="Rewriting token budget")
    llm_timeout_seconds: int = Field(60, description="Rewriting request timeout")

    # ── Operational Mode ───────────────────────────────────────────────────
    mock: bool = Field(False, description="Use mock rewriting client")

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = Field("INFO", description="Log level")
    json_logging: bool = Field(True, description="Enable JSON logging")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir")
    @classmethod
    def ensure_directories(cls, v: Path) -> Path:
        """Ensure directories exist with secure permissions."""
        from .utils import ensure_directory
        ensure_directory(v, mode=0o700)
        return v.resolve()

    @field_validator(
        "title_similarity_threshold", "content_similarity_threshold", "phrase_overlap_threshold"
    )
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate similarity thresholds."""
        if not 0 <= v <= 1:
            raise ValueError("Similarity threshold must be between 0 and 1")
        return v

    @field_validator(
        "max_articles_per_source", "min_articles_per_issue", "articles_per_issue", "lookback_days"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Count must be positive")
        return v

    @model_validator(mode="after")
    def validate_bounds(self) -> "Settings":
        if self.min_title_length > self.max_title_length:
            raise ValueError("min_title_length must not exceed max_title_length")
        if self.min_relevance_score > self.max_relevance_score:
            raise ValueError("min_relevance_score must not exceed max_relevance_score")
        return self

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name


class PipelineConfig:
    """Scoring tables and sources loaded from YAML.

    Every table is exposed read-only so the validator, categorizer and
    deduplicator can share one instance without copying it.
    """

    def __init__(self, config_path: str | Path = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self._config: dict[str, Any] = {}
        self.load_config()

    def load_config(self) -> None:
        """Load pipeline configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Pipeline config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigError(f"Pipeline config must be a mapping: {self.config_path}")

        self._config = data
        try:
            self.sources: tuple[SourceConfig, ...] = tuple(
                SourceConfig(**source) for source in data.get("sources", [])
            )
        except Exception as e:
            raise ConfigError(f"Invalid source definition: {e}") from e

        self.category_weights = self._int_table("category_weights")
        self.default_category_weight = int(data.get("default_category_weight", 5))
        self.relevance_keywords = self._int_table("relevance_keywords")
        self.allowed_domains: tuple[str, ...] = tuple(
            d.lower() for d in data.get("allowed_domains", [])
        )
        self.rewrite_domains: tuple[str, ...] = self.allowed_domains + tuple(
            d.lower() for d in data.get("extra_rewrite_domains", [])
        )

        try:
            self.exclude_patterns: tuple[re.Pattern[str], ...] = tuple(
                re.compile(p, re.IGNORECASE) for p in data.get("exclude_patterns", [])
            )
        except re.error as e:
            raise ConfigError(f"Invalid exclusion pattern: {e}") from e

        self.category_keywords: Mapping[str, tuple[str, ...]] = MappingProxyType({
            name: tuple(k.lower() for k in keywords)
            for name, keywords in data.get("category_keywords", {}).items()
        })
        self.category_priorities = self._int_table("category_priorities", lowercase=False)
        self.default_category = data.get("default_category", "Industry News")
        self.default_category_priority = int(data.get("default_category_priority", 50))

        segment_terms = data.get("segment_terms", {})
        self.pro_terms: tuple[str, ...] = tuple(t.lower() for t in segment_terms.get("pro", []))
        self.driver_terms: tuple[str, ...] = tuple(t.lower() for t in segment_terms.get("driver", []))

        self.stopwords: frozenset[str] = frozenset(w.lower() for w in data.get("stopwords", []))
        self.rewrite_categories: tuple[str, ...] = tuple(
            data.get("rewrite_categories", [])
        ) or tuple(self.category_priorities)

    def _int_table(self, key: str, lowercase: bool = True) -> Mapping[str, int]:
        table = self._config.get(key, {}) or {}
        try:
            return MappingProxyType({
                (str(k).lower() if lowercase else str(k)): int(v) for k, v in table.items()
            })
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Table '{key}' must map names to integers: {e}") from e

    def enabled_sources(self) -> list[SourceConfig]:
        """Enabled sources, highest priority first."""
        return sorted(
            (s for s in self.sources if s.enabled),
            key=lambda s: s.priority,
            reverse=True,
        )


# Global instances
settings = Settings()
_pipeline_config: PipelineConfig | None = None


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def get_pipeline_config() -> PipelineConfig:
    """Get pipeline configuration, loading it on first use."""
    global _pipeline_config
    if _pipeline_config is None:
        _pipeline_config = PipelineConfig(settings.config_path)
    return _pipeline_config


def validate_config(settings: Settings, config: PipelineConfig | None = None) -> list[str]:
    """Validate configuration completeness.

    Returns:
        List of problems found; empty when the configuration is usable
    """
    problems: list[str] = []

    if not settings.mock and not settings.openai_api_key:
        problems.append("OPENAI_API_KEY is required when not in mock mode")

    try:
        config = config or get_pipeline_config()
    except (FileNotFoundError, ConfigError) as e:
        problems.append(str(e))
        return problems

    if not config.enabled_sources():
        problems.append("No enabled sources configured")

    for source in config.sources:
        host = source.host.lower()
        if not any(domain in host for domain in config.allowed_domains):
            problems.append(f"Source '{source.name}' host {host} is not in allowed_domains")
        if source.category.lower() not in config.category_weights:
            problems.append(f"Source '{source.name}' has unknown category '{source.category}'")

    if config.default_category not in config.category_priorities:
        problems.append(f"Default category '{config.default_category}' has no priority weight")

    return problems


if __name__ == "__main__":
    issues = validate_config(get_settings())
    if not issues:
        print("✅ Configuration is valid")
    else:
        for issue in issues:
            print(f"❌ {issue}")
        exit(1)

"""Settings for the Academy Hub search backend."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


class Settings(BaseSettings):
	# Document store
	store_backend: str = _env_field("mongo", "STORE_BACKEND")
	mongo_url: str = _env_field("mongodb://127.0.0.1:27017", "MONGODB_URI", "MONGO_URI")
	mongo_db_name: str = _env_field("academyhub", "MONGO_DB_NAME")
	mongo_server_selection_timeout_ms: int = _env_field(5000, "MONGO_SERVER_SELECTION_TIMEOUT_MS")

	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")

	# Search
	search_min_query_length: int = 2
	search_max_query_length: int = 200
	search_default_limit: int = 20
	search_max_limit: int = 50
	# Per-type page size when one query fans out to every entity type
	search_global_type_limit: int = 5
	search_suggestions_limit: int = 8
	search_history_max_per_user: int = 50
	search_rate_limit_per_minute: int = _env_field(30, "SEARCH_RATE_LIMIT_PER_MINUTE")
	search_capability_ttl_seconds: int = _env_field(300, "SEARCH_CAPABILITY_TTL_SECONDS")
	# Upper bound on how stale an unfiltered "browse all" total may be
	search_estimated_count_ttl_seconds: int = 60
	search_resolver_timeout_seconds: float = _env_field(5.0, "SEARCH_RESOLVER_TIMEOUT_SECONDS")
	search_popular_cache_ttl_seconds: int = 60
	search_enrichment_enabled: bool = _env_field(False, "SEARCH_ENRICHMENT_ENABLED")

	# External enrichment sources
	logodev_api_key: Optional[str] = _env_field(None, "LOGODEV_API_KEY")
	brandfetch_api_key: Optional[str] = _env_field(None, "BRANDFETCH_API_KEY")
	unsplash_access_key: Optional[str] = _env_field(None, "UNSPLASH_ACCESS_KEY")
	logo_min_interval_ms: int = 200
	logo_batch_concurrency: int = 3
	campus_image_cache_ttl_seconds: int = 86400  # 24 hours
	http_timeout_seconds: float = _env_field(5.0, "HTTP_TIMEOUT_SECONDS")

	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(0.1, "LOG_SAMPLING_RATE_INFO")
	obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
	service_name: str = _env_field("academyhub-search", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

	cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		env_nested_delimiter="__",
		extra="ignore",
	)

	@field_validator("cors_allow_origins", mode="before")
	def _split_origins(cls, value):  # type: ignore[override]
		"""Accept a comma-separated string or any iterable of origins."""
		if value in (None, ""):
			return ()
		if isinstance(value, (list, tuple, set)):
			return tuple(str(item).strip() for item in value if str(item).strip())
		if isinstance(value, str):
			return tuple(part.strip() for part in value.split(",") if part.strip())
		return ()

	@field_validator("store_backend", mode="before")
	def _normalise_backend(cls, value):  # type: ignore[override]
		text = str(value or "mongo").strip().lower()
		return text if text in ("mongo", "memory") else "mongo"

	def is_prod(self) -> bool:
		return self.environment.lower() in ("prod", "production", "live")

	def is_dev(self) -> bool:
		return self.environment.lower() in ("dev", "development")


settings = Settings()

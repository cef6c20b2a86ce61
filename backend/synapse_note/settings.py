from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback for text-only prompts (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Synapse Note", validation_alias="OPENROUTER_TITLE")

	# Auth
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=24 * 60, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Required to create the first administrator; setup is disabled while unset
	admin_setup_key: str | None = Field(default=None, validation_alias="ADMIN_SETUP_KEY")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# FastServer listing cache
	fastserver_cache_ttl_seconds: float = Field(default=300.0, validation_alias="FASTSERVER_CACHE_TTL_SECONDS")

	# Inactive user cleanup
	cleanup_inactive_days: int = Field(default=30, validation_alias="CLEANUP_INACTIVE_DAYS")
	cleanup_recent_attempt_days: int = Field(default=7, validation_alias="CLEANUP_RECENT_ATTEMPT_DAYS")
	cleanup_interval_seconds: int = Field(default=24 * 60 * 60, validation_alias="CLEANUP_INTERVAL_SECONDS")

	# Google Apps Script statistics endpoint (optional)
	google_apps_script_url: str | None = Field(default=None, validation_alias="GOOGLE_APPS_SCRIPT_URL")
	use_google_apps_script: bool = Field(default=False, validation_alias="USE_GOOGLE_APPS_SCRIPT")
	google_apps_script_timeout_seconds: float = Field(default=10.0, validation_alias="GOOGLE_APPS_SCRIPT_TIMEOUT_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	environment: str = Field(default="development", validation_alias="ENVIRONMENT")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def apps_script_enabled(self) -> bool:
		return bool(self.use_google_apps_script and self.google_apps_script_url)

settings = Settings()

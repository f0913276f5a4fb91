from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	# Text/JSON model used for content generation, grading and reports
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Speech synthesis model for listening dialogues
	gemini_model_tts: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_MODEL_TTS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	request_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# OpenRouter fallback configuration (optional, plain text prompts only)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Hermes Placement Assessment", validation_alias="OPENROUTER_TITLE")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed user
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	# Assessment
	default_level: str = Field(default="B1", validation_alias="DEFAULT_LEVEL")
	# Gemini TTS returns 16-bit mono PCM at 24 kHz
	audio_sample_rate: int = Field(default=24000, validation_alias="AUDIO_SAMPLE_RATE")
	audio_channels: int = Field(default=1, validation_alias="AUDIO_CHANNELS")
	recording_mime_type: str = Field(default="audio/webm;codecs=opus", validation_alias="RECORDING_MIME_TYPE")
	default_voice_name: str = Field(default="zephyr", validation_alias="DEFAULT_VOICE_NAME")

	# Logging
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()

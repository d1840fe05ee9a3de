from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parents[2]
REPO_ROOT = BACKEND_DIR.parent
ENV_FILES = [REPO_ROOT / ".env", BACKEND_DIR / ".env"]

for env_path in ENV_FILES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="allow", populate_by_name=True)

    app_name: str = Field(default="Storyline Pipeline", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(default="sqlite+aiosqlite:///./storyline.db", alias="DATABASE_URL")

    # OpenAI-compatible providers (transcription, tool calling, images)
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    transcription_api_key: str = Field(default="", alias="TRANSCRIPTION_API_KEY")
    transcription_base_url: Optional[str] = Field(default=None, alias="TRANSCRIPTION_BASE_URL")
    transcription_model: str = Field(default="whisper-1", alias="TRANSCRIPTION_MODEL")
    chat_model: str = Field(default="gpt-4o", alias="CHAT_MODEL")
    image_model: str = Field(default="gpt-image-1", alias="IMAGE_MODEL")
    scene_image_size: str = Field(default="1024x1536", alias="SCENE_IMAGE_SIZE")
    scene_image_quality: str = Field(default="medium", alias="SCENE_IMAGE_QUALITY")
    character_image_size: str = Field(default="1024x1024", alias="CHARACTER_IMAGE_SIZE")
    character_image_quality: str = Field(default="low", alias="CHARACTER_IMAGE_QUALITY")

    # Image-to-video rendering
    runway_api_key: str = Field(default="", alias="RUNWAY_API_KEY")
    runway_base_url: str = Field(default="https://api.dev.runwayml.com", alias="RUNWAY_BASE_URL")
    runway_api_version: str = Field(default="2024-11-06", alias="RUNWAY_API_VERSION")
    runway_model: str = Field(default="gen4_turbo", alias="RUNWAY_MODEL")
    video_ratio: str = Field(default="720:1280", alias="VIDEO_RATIO")
    video_duration_seconds: int = Field(default=5, alias="VIDEO_DURATION_SECONDS")
    video_seed: Optional[int] = Field(default=0, alias="VIDEO_SEED")

    # Object storage (S3 / MinIO)
    s3_endpoint_url: Optional[str] = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_access_key: Optional[str] = Field(default=None, alias="S3_ACCESS_KEY")
    s3_secret_key: Optional[str] = Field(default=None, alias="S3_SECRET_KEY")
    s3_region: str = Field(default="us-east-1", alias="S3_REGION")
    s3_secure: Optional[bool] = Field(default=None, alias="S3_SECURE")
    storage_public_base_url: Optional[str] = Field(default=None, alias="STORAGE_PUBLIC_BASE_URL")
    image_bucket: str = Field(default="storyline-images", alias="IMAGE_BUCKET")
    video_bucket: str = Field(default="storyline-videos", alias="VIDEO_BUCKET")
    original_video_bucket: str = Field(default="storyline-originals", alias="ORIGINAL_VIDEO_BUCKET")
    storage_stream_chunk_mb: int = Field(default=10, alias="STORAGE_STREAM_CHUNK_MB")

    # Pipeline limits
    max_audio_upload_mb: int = Field(default=25, alias="MAX_AUDIO_UPLOAD_MB")
    max_original_video_mb: int = Field(default=100, alias="MAX_ORIGINAL_VIDEO_MB")
    max_scene_prompts: int = Field(default=20, alias="MAX_SCENE_PROMPTS")
    character_count: int = Field(default=4, alias="CHARACTER_COUNT")
    character_transcript_word_limit: int = Field(default=200, alias="CHARACTER_TRANSCRIPT_WORD_LIMIT")
    storyline_write_retries: int = Field(default=3, alias="STORYLINE_WRITE_RETRIES")

    # Video job polling
    video_poll_interval_seconds: float = Field(default=5.0, alias="VIDEO_POLL_INTERVAL_SECONDS")
    video_poll_backoff_factor: float = Field(default=1.5, alias="VIDEO_POLL_BACKOFF_FACTOR")
    video_poll_max_interval_seconds: float = Field(default=30.0, alias="VIDEO_POLL_MAX_INTERVAL_SECONDS")
    video_poll_max_lifetime_seconds: float = Field(default=900.0, alias="VIDEO_POLL_MAX_LIFETIME_SECONDS")
    worker_rescan_seconds: float = Field(default=30.0, alias="WORKER_RESCAN_SECONDS")

    backend_cors_origins_raw: str = Field(default="http://localhost:3000", alias="BACKEND_CORS_ORIGINS")

    @property
    def backend_cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.backend_cors_origins_raw.split(",") if origin.strip()]

    @property
    def max_audio_upload_bytes(self) -> int:
        return self.max_audio_upload_mb * 1024 * 1024

    @property
    def max_original_video_bytes(self) -> int:
        return self.max_original_video_mb * 1024 * 1024

    @property
    def storage_configured(self) -> bool:
        return all([self.s3_endpoint_url, self.s3_access_key, self.s3_secret_key])


@lru_cache
def get_settings() -> Settings:
    return Settings()

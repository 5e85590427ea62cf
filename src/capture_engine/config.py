from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

class Settings(BaseSettings):
    OPENAI_API_KEY: str = Field("", description="OpenAI API Key")
    MODEL_ANSWER: str = "gpt-4o"
    MODEL_BRIEF: str = "gpt-4o"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    DB_PATH: str = Field("./db.sqlite", description="Path to SQLite document store")
    BLOB_ROOT: str = Field("./blobs", description="Root directory of the local blob store")
    DOCUMENTS_BUCKET: str = "documents"
    LOG_LEVEL: str = "INFO"

    # Retrieval / context budgets
    EMBED_MAX_CHARS: int = Field(15_000, description="Safe input length for the embedding service")
    BRIEF_MAX_SOLICITATION_CHARS: int = 45_000
    SOURCE_TIMEOUT_SECONDS: Optional[float] = Field(None, description="Deadline for each context source")
    CONTEXT_BUDGETS_PATH: Optional[str] = Field(None, description="YAML file overriding the budget table")
    KB_MIN_SCORE: float = 0.45
    PAST_PERF_MIN_SCORE: float = 0.40
    CONTENT_LIB_MIN_SCORE: float = 0.40
    KB_TOP_K: int = Field(12, description="Knowledge-base chunks searched per request")

    # MLflow settings
    MLFLOW_TRACKING_URI: str = Field("http://127.0.0.1:5000", description="MLflow tracking server URI")
    MLFLOW_ENABLE_TRACING: bool = Field(False, description="Enable MLflow tracing")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

@lru_cache()
def get_settings() -> Settings:
    return Settings()

def load_budget_overrides(path: Optional[str] = None) -> Dict[str, Any]:
    """Read the optional task-type budget table (see context.budget)."""
    path = path or get_settings().CONTEXT_BUDGETS_PATH
    if not path or not Path(path).exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: float = 10.0

    # OpenAI-compatible chat completions endpoint
    LLM_API_URL: str = "https://api.openai.com/v1"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.0
    LLM_TIMEOUT_SECONDS: float = 30.0
    LLM_MAX_RETRIES: int = 0

    QUERY_TIMEOUT_SECONDS: float = 30.0
    MAX_ROWS: int = 1000

    SCHEMA_CONTEXT_ENABLED: bool = True
    SCHEMA_CACHE_TTL_SECONDS: int = 300
    # Empty list means every table the connection can see
    ALLOWED_TABLES: List[str] = []

    FLASH_TTL_SECONDS: int = 60
    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "google/gemini-2.5-flash"
    temperature: float = 0.0
    model_timeout_seconds: float = 60.0

    # Search provider (DuckDuckGo HTML)
    search_url: str = "https://html.duckduckgo.com/html/"
    search_user_agent: str = "Mozilla/5.0 (compatible)"
    search_max_results: int = 3
    search_timeout_seconds: float = 15.0

    # Manual orchestration
    max_tool_calls: int = 1

    # App
    host: str = "0.0.0.0"
    port: int = 3003
    cors_origins: str = "*"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()

"""Settings. .env overrides some of these values."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///db/insights.sqlite"

    # LLM via OpenRouter or any OpenAI-compatible endpoint (Ollama: http://localhost:11434/v1)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "google/gemini-2.5-flash"
    browsing_model: str = "google/gemini-2.5-flash"
    relevance_timeout_ms: int = 60000

    # Interests used by the relevance oracle
    interests_path: str = "config/interests.json"

    # Crawl controller budgets
    crawl_max_pages: int = 3
    crawl_max_clicks: int = 2
    crawl_max_depth: int = 2
    crawl_max_candidates: int = 2
    crawl_timeout_ms: int = 120000
    crawl_nav_timeout_ms: int = 20000
    crawl_decision_timeout_ms: int = 15000
    crawl_user_agent: str = (
        "Mozilla/5.0 (compatible; InsightTracker/1.0; +https://github.com/insight-tracker)"
    )

    # Sources (comma separated)
    fallback_seed_urls: str = ""
    fallback_domain_allowlist: str = ""
    hackernoon_seed_urls: str = ""
    hackernoon_domain_allowlist: str = ""

    # Hacker News
    hn_api_base_url: str = "https://hacker-news.firebaseio.com/v0"
    min_hn_score: int = 100
    hn_max_pages: int = 6
    hn_page_size: int = 30

    # Delivery
    delivery_top_n: int = 5
    pushover_user_key: str = ""
    pushover_api_token: str = ""
    pushover_url: str = "https://api.pushover.net/1/messages.json"

    # Feedback links + API
    feedback_secret: str = ""
    feedback_base_url: str = ""
    feedback_ttl_hours: int = 36
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def parse_csv(value: str | None) -> list[str]:
    """Split a comma separated setting, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


settings = Settings()

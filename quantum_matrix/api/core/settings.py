from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_name: str = "S3SentimentEngine"
    debug: bool = False
    api_key: str = "DEV_DEFAULT_KEY"

    storage_backend: str = "memory"          # memory | clickhouse
    clickhouse_host: str = "localhost"
    clickhouse_port: int = 9000
    clickhouse_database: str = "default"

    fred_api_key: Optional[str] = None
    language_model: Optional[str] = None     # Hugging Face model id, pipeline default when unset

    engine_config_path: str = "config/engine.yaml"
    sources_config_path: str = "config/sources.yaml"
    strategies_config_path: str = "config/strategies.yaml"
    calibration_export_path: str = "data/calibration/evaluations"

    log_level: str = "INFO"
    rebalance_interval_minutes: int = 30
    feedback_interval_hours: int = 4
    persist_delay_seconds: float = 1.5
    embedded_scheduler: bool = True         # run the periodic jobs inside the API process

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()

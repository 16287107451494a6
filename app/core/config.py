from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # DB
    DATABASE_URL: str = "sqlite:///./database.db"

    # Security / JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    LOG_LEVEL: str = "INFO"

    # Price mutation
    APPLY_MAX_RETRIES: int = 3

    # Competitor tracking
    COMPETITOR_FRESHNESS_HOURS: int = 48
    COMPETITOR_HIGH_QUALITY_THRESHOLD: float = 0.7
    COMPETITOR_NUDGE_WEIGHT: float = 0.5

    # Demand forecasting
    FORECAST_HISTORY_DAYS: int = 120
    FORECAST_MAX_HORIZON_DAYS: int = 90
    FORECAST_SEASONALITY_THRESHOLD: float = 0.3
    FORECAST_SMOOTHING_ALPHA: float = 0.3
    FORECAST_ACCURACY_WINDOW_DAYS: int = 30
    DEMAND_SENSITIVITY: float = 0.5
    DEMAND_MAX_ADJUSTMENT: float = 0.15

    # Surge pricing
    SURGE_STOCK_LOW_FRACTION: float = 0.5
    SURGE_TRAFFIC_ZSCORE: float = 3.0
    SURGE_DEFAULT_DURATION_MINUTES: int = 60

    # Experiments
    EXPERIMENT_MIN_SAMPLE_SIZE: int = 30
    EXPERIMENT_SIGNIFICANCE_LEVEL: float = 0.05

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SURGE_SWEEP_INTERVAL_SECONDS: int = 60
    FORECAST_REFRESH_INTERVAL_SECONDS: int = 6 * 60 * 60
    AUTO_OPTIMIZE_ENABLED: bool = False
    AUTO_OPTIMIZE_INTERVAL_SECONDS: int = 24 * 60 * 60
    BATCH_SIZE: int = 50

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

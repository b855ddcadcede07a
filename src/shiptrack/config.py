from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    secret_key: str
    cron_secret: str | None = None
    external_cron_secret: str | None = None
    data_dir: str = "/data"
    # Store calls run on the event loop, so a locked database must fail fast
    db_timeout_seconds: float = 2.0

    whatsapp_token: str | None = None
    whatsapp_phone_number_id: str | None = None
    whatsapp_verify_token: str | None = None
    whatsapp_group_id: str | None = None
    whatsapp_api_url: str = "https://graph.facebook.com/v17.0"
    notification_timeout_seconds: float = 10.0
    admin_phone: str | None = None

    tracking_id_prefix: str = "AWB"
    tracking_id_length: int = 9
    intake_window_minutes: int = 60
    retry_backoff_minutes: int = 5
    max_notification_retries: int = 3
    retention_days: int = 7

    scheduler_enabled: bool = True
    self_heal_interval_minutes: int = 2
    pulse_interval_minutes: int = 2
    retry_interval_minutes: int = 5
    prune_hour: int = 0
    report_hour: int = 8

    model_config = {"env_prefix": "SHIPTRACK_"}


settings = Settings()

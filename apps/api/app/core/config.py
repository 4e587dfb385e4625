from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_url: str = "postgresql+psycopg://app:app@db:5432/app"

    jwt_secret: str = "change-me"
    tenant_id: str = "5f0c3e1a-6d2b-4c8e-9a41-7b3d2e9f0a11"
    tenant_name: str = "MIMO Team"

    # Auth: cookies checked (in order) when no bearer header is sent
    auth_cookie_names: str = "token,access_token,jwt,auth_token"

    # Payment reconciliation
    enforce_single_payment_link: bool = True  # Reject linking a service owned by another payment
    eligible_default_service_type: str = "ALL"  # "ALL" disables the service type filter
    max_bulk_status_ids: int = 500  # Upper bound for /payments/service-status

    # Middleware configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_format: str = "json"  # json or text
    enable_request_logging: bool = True
    cors_origins: str = ""  # Comma-separated list of allowed origins
    enable_gzip: bool = True

    # Metrics configuration (OpenTelemetry)
    enable_metrics: bool = True  # Enable OpenTelemetry metrics
    metrics_namespace: str = ""  # OpenTelemetry meter name (defaults to tenant_name)
    otel_service_name: str = ""  # OpenTelemetry service name (defaults to tenant_name)
    otel_exporter_otlp_endpoint: str = ""  # OTLP endpoint (e.g., http://localhost:4317)

    model_config = {
        "env_file": "../.env",
        "env_file_encoding": "utf-8",
    }

    @property
    def cookie_names(self) -> list[str]:
        return [name.strip() for name in self.auth_cookie_names.split(",") if name.strip()]


settings = Settings()

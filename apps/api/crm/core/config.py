from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_url: str = "postgresql+psycopg://app:app@db:5432/app"

    jwt_secret: str = "change-me"
    workspace_id: str = "12345678-1234-5678-1234-567812345678"
    workspace_name: str = "Campus CRM"

    # Middleware configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_format: str = "json"  # json or text
    enable_request_logging: bool = True
    cors_origins: str = ""  # Comma-separated list of allowed origins
    enable_gzip: bool = True

    # Metrics configuration (OpenTelemetry)
    enable_metrics: bool = True
    metrics_namespace: str = ""  # OpenTelemetry meter name (defaults to workspace_name)
    otel_service_name: str = ""  # OpenTelemetry service name (defaults to workspace_name)
    otel_exporter_otlp_endpoint: str = ""  # OTLP endpoint (e.g., http://localhost:4318)

    # Bulk import
    import_preview_rows: int = 10
    import_default_chunk_size: int = 50
    import_max_chunk_size: int = 250
    import_max_chunk_calls: int = 2000
    import_preview_timeout_seconds: float = 90.0
    import_session_ttl_minutes: int = 30  # READY sessions waiting for commit
    import_retention_minutes: int = 60  # finished sessions kept for polling
    import_max_upload_bytes: int = 10 * 1024 * 1024
    import_max_paste_rows: int = 2000
    import_max_stored_errors: int = 500
    import_response_error_limit: int = 10

    # Phone matching: empty keeps digit-only normalization, otherwise an
    # ISO region (e.g. "BD", "IE") used to format numbers as E.164
    phone_default_region: str = ""

    model_config = {
        "env_file": "../.env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()

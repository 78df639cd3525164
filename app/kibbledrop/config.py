import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    public_base_url: str
    business_email: str

    storage_backend: str
    local_storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    tradesafe_client_id: str
    tradesafe_client_secret: str
    tradesafe_environment: str
    tradesafe_auth_url: str
    tradesafe_graphql_url: str
    tradesafe_webhook_secret: str
    tradesafe_seller_token: str
    tradesafe_timeout_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///kibbledrop.db"),
        public_base_url=_getenv("PUBLIC_BASE_URL", "http://localhost:8080"),
        business_email=_getenv("BUSINESS_EMAIL", "admin@kibbledrop.com"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        tradesafe_client_id=_getenv("TRADESAFE_CLIENT_ID", ""),
        tradesafe_client_secret=_getenv("TRADESAFE_CLIENT_SECRET", ""),
        tradesafe_environment=_getenv("TRADESAFE_ENVIRONMENT", "sandbox").lower(),
        tradesafe_auth_url=_getenv("TRADESAFE_AUTH_URL", ""),
        tradesafe_graphql_url=_getenv("TRADESAFE_GRAPHQL_URL", ""),
        tradesafe_webhook_secret=_getenv("TRADESAFE_WEBHOOK_SECRET", ""),
        tradesafe_seller_token=_getenv("TRADESAFE_SELLER_TOKEN", ""),
        tradesafe_timeout_seconds=_getenv_int("TRADESAFE_TIMEOUT_SECONDS", 30),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "PUBLIC_BASE_URL": s.public_base_url,
        "BUSINESS_EMAIL": s.business_email,
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "TRADESAFE_CLIENT_ID": s.tradesafe_client_id,
        "TRADESAFE_CLIENT_SECRET": s.tradesafe_client_secret,
        "TRADESAFE_ENVIRONMENT": s.tradesafe_environment,
        "TRADESAFE_AUTH_URL": s.tradesafe_auth_url,
        "TRADESAFE_GRAPHQL_URL": s.tradesafe_graphql_url,
        "TRADESAFE_WEBHOOK_SECRET": s.tradesafe_webhook_secret,
        "TRADESAFE_SELLER_TOKEN": s.tradesafe_seller_token,
        "TRADESAFE_TIMEOUT_SECONDS": s.tradesafe_timeout_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # product image uploads are capped at 2MB in the handler
        "MAX_CONTENT_LENGTH": 5 * 1024 * 1024,
    }

from __future__ import annotations

from typing import Any, Mapping

from flask import current_app

from app.kibbledrop.modules.tradesafe.client import (
    AUTH_URL,
    PRODUCTION_GRAPHQL_URL,
    SANDBOX_GRAPHQL_URL,
    TradeSafeClient,
    TradeSafeConfigError,
)

REQUIRED_KEYS = ("TRADESAFE_CLIENT_ID", "TRADESAFE_CLIENT_SECRET")


def urls_for_environment(environment: str) -> tuple[str, str]:
    """(auth_url, graphql_url) for "sandbox" or "production"; anything else is sandbox."""
    if (environment or "").strip().lower() == "production":
        return AUTH_URL, PRODUCTION_GRAPHQL_URL
    return AUTH_URL, SANDBOX_GRAPHQL_URL


def missing_credentials(config: Mapping[str, Any]) -> list[str]:
    return [k for k in REQUIRED_KEYS if not (config.get(k) or "").strip()]


def client_from_config(config: Mapping[str, Any]) -> TradeSafeClient:
    missing = missing_credentials(config)
    if missing:
        raise TradeSafeConfigError(f"TradeSafe credentials not configured: missing {', '.join(missing)}")
    auth_url, graphql_url = urls_for_environment(config.get("TRADESAFE_ENVIRONMENT") or "sandbox")
    return TradeSafeClient(
        client_id=config["TRADESAFE_CLIENT_ID"].strip(),
        client_secret=config["TRADESAFE_CLIENT_SECRET"].strip(),
        auth_url=(config.get("TRADESAFE_AUTH_URL") or "").strip() or auth_url,
        graphql_url=(config.get("TRADESAFE_GRAPHQL_URL") or "").strip() or graphql_url,
        timeout_seconds=int(config.get("TRADESAFE_TIMEOUT_SECONDS") or 30),
    )


def get_client() -> TradeSafeClient:
    """
    App-wide client. Kept in app.extensions so the OAuth token cache survives
    across requests within a worker.
    """
    client = current_app.extensions.get("tradesafe_client")
    if client is None:
        client = client_from_config(current_app.config)
        current_app.extensions["tradesafe_client"] = client
    return client


def _mask(value: str) -> str:
    value = value or ""
    if len(value) <= 4:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 4)


def config_status(config: Mapping[str, Any]) -> dict:
    """Admin-facing configuration report. Never includes secrets."""
    environment = (config.get("TRADESAFE_ENVIRONMENT") or "sandbox").strip().lower()
    auth_url, graphql_url = urls_for_environment(environment)
    missing = missing_credentials(config)
    return {
        "configured": not missing,
        "environment": environment,
        "auth_url": (config.get("TRADESAFE_AUTH_URL") or "").strip() or auth_url,
        "graphql_url": (config.get("TRADESAFE_GRAPHQL_URL") or "").strip() or graphql_url,
        "client_id": _mask((config.get("TRADESAFE_CLIENT_ID") or "").strip()) or None,
        "has_client_secret": bool((config.get("TRADESAFE_CLIENT_SECRET") or "").strip()),
        "has_webhook_secret": bool((config.get("TRADESAFE_WEBHOOK_SECRET") or "").strip()),
        "has_seller_token": bool((config.get("TRADESAFE_SELLER_TOKEN") or "").strip()),
        "business_email": config.get("BUSINESS_EMAIL") or None,
        "missing": missing + ([] if (config.get("TRADESAFE_WEBHOOK_SECRET") or "").strip() else ["TRADESAFE_WEBHOOK_SECRET"]),
    }

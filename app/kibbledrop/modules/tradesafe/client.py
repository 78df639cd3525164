from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

logger = logging.getLogger(__name__)

AUTH_URL = "https://auth.tradesafe.co.za/oauth/token"
SANDBOX_GRAPHQL_URL = "https://api-developer.tradesafe.dev/graphql"
PRODUCTION_GRAPHQL_URL = "https://api.tradesafe.co.za/graphql"

# Refresh the bearer token this long before the server says it expires.
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class TradeSafeError(RuntimeError):
    pass


class TradeSafeConfigError(TradeSafeError):
    pass


class TradeSafeAuthError(TradeSafeError):
    pass


class TradeSafeGraphQLError(TradeSafeError):
    def __init__(self, messages: list[str]):
        self.messages = messages
        super().__init__(f"GraphQL errors: {', '.join(messages)}")


TOKEN_CREATE = """
mutation TokenCreate($input: TokenCreateInput!) {
  tokenCreate(input: $input) {
    id
    name
    reference
  }
}
"""

TRANSACTION_FIELDS = """
    id
    title
    description
    industry
    state
    currency
    feeAllocation
    workflow
    reference
    createdAt
    parties { id name role }
    allocations { id title description value state daysToDeliver daysToInspect }
"""

TRANSACTION_CREATE = (
    "mutation TransactionCreate($input: TransactionCreateInput!) {\n"
    "  transactionCreate(input: $input) {" + TRANSACTION_FIELDS + "  }\n}\n"
)

TRANSACTION_QUERY = "query Transaction($id: ID!) {\n  transaction(id: $id) {" + TRANSACTION_FIELDS + "  }\n}\n"

CHECKOUT_LINK = """
mutation CreatePaymentLink($transactionId: ID!, $embed: Boolean) {
  createPaymentLink(transactionId: $transactionId, embed: $embed) {
    id
    url
    expiresAt
  }
}
"""


def to_cents(amount: Decimal | float | int) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_mobile(raw: str | None) -> str:
    """South African numbers in E.164 form: 082 123 4567 -> +27821234567."""
    raw = (raw or "").strip()
    if not raw:
        return ""
    digits = "".join(ch for ch in raw if ch.isdigit())
    if raw.startswith("+"):
        return "+" + digits
    if digits.startswith("27"):
        return "+" + digits
    if digits.startswith("0"):
        return "+27" + digits[1:]
    return "+27" + digits


@dataclass
class TradeSafeClient:
    client_id: str
    client_secret: str
    auth_url: str = AUTH_URL
    graphql_url: str = SANDBOX_GRAPHQL_URL
    timeout_seconds: int = 30

    _access_token: str | None = field(default=None, init=False, repr=False)
    _token_expires_at: float = field(default=0.0, init=False, repr=False)

    def _post(self, url: str, body: bytes, headers: dict[str, str]) -> dict[str, Any]:
        req = urllib.request.Request(url, data=body, method="POST")
        for k, v in headers.items():
            req.add_header(k, v)
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                detail = e.read().decode("utf-8", errors="ignore")
            except OSError:
                detail = ""
            if e.code in (401, 403):
                raise TradeSafeAuthError(f"HTTP {e.code} from TradeSafe: {detail[:300]}") from e
            raise TradeSafeError(f"HTTP {e.code} from TradeSafe: {detail[:300]}") from e
        except urllib.error.URLError as e:
            raise TradeSafeError(f"TradeSafe unreachable: {e.reason}") from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise TradeSafeError(f"Invalid JSON from TradeSafe ({url})") from e
        if not isinstance(data, dict):
            raise TradeSafeError(f"Unexpected response from TradeSafe ({url})")
        return data

    def access_token(self) -> str:
        """Client-credentials bearer token, cached until shortly before expiry."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        body = urllib.parse.urlencode(
            {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        ).encode("utf-8")
        try:
            data = self._post(self.auth_url, body, {"Content-Type": "application/x-www-form-urlencoded"})
        except TradeSafeAuthError:
            raise
        except TradeSafeError as e:
            raise TradeSafeAuthError(f"OAuth token request failed: {e}") from e

        token = data.get("access_token")
        if not token:
            raise TradeSafeAuthError("OAuth token response did not include an access_token")
        try:
            expires_in = int(data.get("expires_in") or 3600)
        except (TypeError, ValueError):
            expires_in = 3600
        self._access_token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        logger.info("TradeSafe access token acquired (expires_in=%s)", expires_in)
        return token

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL operation and return its `data` object."""
        body = json.dumps({"query": query, "variables": variables or {}}).encode("utf-8")
        result = self._post(
            self.graphql_url,
            body,
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.access_token()}"},
        )
        errors = result.get("errors") or []
        if errors:
            messages = [str(e.get("message") if isinstance(e, dict) else e) for e in errors]
            logger.error("TradeSafe GraphQL errors: %s", messages)
            raise TradeSafeGraphQLError(messages)
        data = result.get("data")
        if not isinstance(data, dict):
            raise TradeSafeError("TradeSafe response did not include data")
        return data

    def token_create(self, *, given_name: str, family_name: str, email: str, mobile: str = "") -> dict[str, Any]:
        user: dict[str, str] = {"givenName": given_name, "familyName": family_name, "email": email}
        if mobile:
            user["mobile"] = mobile
        data = self.execute(TOKEN_CREATE, {"input": {"user": user}})
        token = data.get("tokenCreate") or {}
        if not token.get("id"):
            raise TradeSafeError("tokenCreate returned no token id")
        return token

    def transaction_create(
        self,
        *,
        title: str,
        description: str,
        reference: str,
        buyer_token: str,
        seller_token: str,
        allocations: list[dict[str, Any]],
        fee_allocation: str = "BUYER",
    ) -> dict[str, Any]:
        """
        allocations: [{"title", "description", "value" (cents), "daysToDeliver"?, "daysToInspect"?}]
        """
        variables = {
            "input": {
                "title": title,
                "description": description,
                "industry": "GENERAL_GOODS_SERVICES",
                "currency": "ZAR",
                "feeAllocation": fee_allocation,
                "workflow": "STANDARD",
                "reference": reference,
                "allocations": {
                    "create": [
                        {
                            "title": a["title"],
                            "description": a["description"],
                            "value": a["value"],
                            "daysToDeliver": a.get("daysToDeliver", 7),
                            "daysToInspect": a.get("daysToInspect", 3),
                        }
                        for a in allocations
                    ]
                },
                "parties": {
                    "create": [
                        {"token": buyer_token, "role": "BUYER"},
                        {"token": seller_token, "role": "SELLER"},
                    ]
                },
            }
        }
        data = self.execute(TRANSACTION_CREATE, variables)
        tx = data.get("transactionCreate") or {}
        if not tx.get("id"):
            raise TradeSafeError("transactionCreate returned no transaction id")
        return tx

    def checkout_link(self, transaction_id: str, *, embed: bool = False) -> dict[str, Any]:
        data = self.execute(CHECKOUT_LINK, {"transactionId": transaction_id, "embed": embed})
        link = data.get("createPaymentLink") or {}
        if not link.get("url"):
            raise TradeSafeError("createPaymentLink returned no url")
        return link

    def get_transaction(self, transaction_id: str) -> dict[str, Any]:
        data = self.execute(TRANSACTION_QUERY, {"id": transaction_id})
        tx = data.get("transaction")
        if not isinstance(tx, dict):
            raise TradeSafeError(f"Transaction {transaction_id} not found")
        return tx

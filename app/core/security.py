import hashlib
import hmac
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

BEARER_PREFIX = "Bearer "


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="pdfbuilder-access-token",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(user_id: str, email: str | None = None) -> str:
    """Issue a signed bearer token for an identity already verified upstream."""
    payload: dict[str, Any] = {"user_id": user_id}
    if email:
        payload["email"] = email
    return get_token_serializer().dumps(payload)


def verify_access_token(token: str) -> dict[str, Any] | None:
    """Return the token payload, or None if the signature is bad or the token expired."""
    settings = get_settings()
    try:
        payload = get_token_serializer().loads(token, max_age=settings.access_token_ttl_seconds)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict) or not payload.get("user_id"):
        return None
    return payload


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    expected = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)

import base64
import hashlib
import hmac

from autopay_bridge.errors import AuthenticationFailure


def verify_razorpay_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Check an ``X-Razorpay-Signature`` header against the raw request body.

    Razorpay signs the exact bytes it sends with HMAC-SHA256 and hex-encodes the
    digest, so this must run before the body is parsed.
    """
    if not signature or not secret:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def verify_shopify_hmac(raw_body: bytes, signature: str, secret: str) -> bool:
    """Check an ``X-Shopify-Hmac-Sha256`` header (base64 digest)."""
    if not signature or not secret:
        return False

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def require_valid(valid: bool, source: str) -> None:
    if not valid:
        raise AuthenticationFailure(f"Invalid {source} webhook signature")

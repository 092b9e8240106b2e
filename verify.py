import hmac, hashlib
from typing import Optional


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check X-TFC-Task-Signature against HMAC-SHA512(secret, body).

    An empty secret disables verification; callers are expected to log that.
    """
    if not secret:
        return True
    if not signature:
        return False
    try:
        return hmac.compare_digest(sign(secret, body), signature.strip())
    except (TypeError, ValueError):
        # compare_digest rejects non-ASCII str input
        return False

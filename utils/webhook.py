import hashlib
import hmac
from typing import Optional


def sign_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    # X-Hub-Signature-256: sha256=<hex>
    if not secret or not signature or not signature.startswith("sha256="):
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature)

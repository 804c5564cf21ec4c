import hashlib
import hmac
import time
from typing import Iterable, List, Optional, Tuple, Union

from webhook_dedup.errors import SignatureInvalid

Payload = Union[str, bytes]

SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE_SECONDS = 300


def _as_bytes(value: Payload) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def parse_signature_header(header: str) -> Tuple[Optional[int], List[str]]:
    """Split ``t=<ts>,v1=<sig>[,v1=<sig>...]`` into its timestamp and v1 signatures.

    Elements with other schemes are ignored. A missing or non-numeric
    timestamp comes back as None.
    """
    timestamp: Optional[int] = None
    signatures: List[str] = []
    for element in header.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: Payload, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + _as_bytes(payload)
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def sign_payload(payload: Payload, secret: str, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{SIGNATURE_SCHEME}={compute_signature(payload, secret, ts)}"


def verify_signature(
    payload: Payload,
    signature_header: str,
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    if not signature_header or not secret:
        return False

    timestamp, signatures = parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        return False

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        return False

    expected = compute_signature(payload, secret, timestamp)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


def require_valid_signature(
    payload: Payload,
    signature_header: Optional[str],
    secrets: Iterable[str],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Raise SignatureInvalid unless the header verifies against one of ``secrets``.

    Several secrets are accepted so an endpoint secret can be rotated without
    rejecting deliveries signed with the previous one.
    """
    if not signature_header:
        raise SignatureInvalid("missing signature header")
    for secret in secrets:
        if verify_signature(payload, signature_header, secret, tolerance_seconds, now):
            return
    raise SignatureInvalid("signature verification failed")

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from ecdsa import BadSignatureError
from ecdsa.util import sigdecode_string, sigencode_string

from .crypto import (
    UnsupportedKeyFormatError,
    get_algorithm,
    load_private_key,
    load_public_key,
)
from .models import KeyPair


logger = logging.getLogger(__name__)

NO_MATCHING_KEY = "no matching key"


class MalformedTokenError(RuntimeError):
    """Exception raised when an activation key is not a three-segment signed token."""

    pass


class SigningFailedError(RuntimeError):
    """Exception raised when an activation key cannot be signed."""

    pass


class VerificationFailedError(RuntimeError):
    """Exception raised when an activation key does not verify against a key pair."""

    pass


def _b64u_encode(b: bytes) -> str:
    """
    Encode bytes to URL-safe base64 string without padding.

    Args:
        b: Bytes to encode.

    Returns:
        URL-safe base64 encoded string with trailing '=' padding removed.
    """
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def _b64u_decode(s: str) -> bytes:
    """
    Decode URL-safe base64 string to bytes, handling missing padding.

    Raises:
        ValueError: If the text is not unpadded base64url.
    """
    s = s.strip()
    if any(c in s for c in "+/="):
        raise ValueError("not unpadded base64url text")
    s += "=" * (-len(s) % 4)
    try:
        return base64.b64decode(s.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(str(e)) from e


def compact_json(obj: Dict[str, Any]) -> bytes:
    """
    Encode a JSON object without whitespace, keeping key order.

    Args:
        obj: Dictionary to encode.

    Returns:
        UTF-8 encoded JSON bytes.
    """
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def format_payload(payload: Dict[str, Any]) -> str:
    """Render a payload the way the editor shows it: two-space indented JSON."""
    return json.dumps(payload, indent=2, ensure_ascii=False)


def encode_segments(header: Dict[str, Any], payload: Dict[str, Any]) -> str:
    """Return the "header.payload" signing input of a compact token."""
    return f"{_b64u_encode(compact_json(header))}.{_b64u_encode(compact_json(payload))}"


@dataclass(frozen=True)
class DecodedToken:
    """
    Structural view of a compact token. The signature is not checked.

    Attributes:
        header: Decoded protected header.
        payload: Decoded claim set.
        signature: Raw signature segment text (base64url).
    """

    header: Dict[str, Any]
    payload: Dict[str, Any]
    signature: str


@dataclass(frozen=True)
class ActivationKeyMetadata:
    """
    Facts read from a token's header and claims.

    Attributes:
        algorithm: Header "alg", or None.
        issued_at: "iat" claim as a UTC datetime, or None.
        expires_at: "exp" claim as a UTC datetime, or None.
    """

    algorithm: Optional[str]
    issued_at: Optional[datetime]
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of checking one token against one key pair.

    Attributes:
        is_valid: True if the signature verified.
        error: Failure message, or None when valid.
    """

    is_valid: bool
    error: Optional[str] = None


def _decode_json_segment(segment: str, what: str) -> Dict[str, Any]:
    try:
        value = json.loads(_b64u_decode(segment).decode("utf-8"))
    except ValueError as e:
        raise MalformedTokenError(f"Token {what} is not base64url-encoded JSON") from e
    if not isinstance(value, dict):
        raise MalformedTokenError(f"Token {what} is not a JSON object")
    return value


def _split_token(token: str) -> Tuple[str, str, str]:
    """
    Split a compact token into its header, payload and signature segments.

    Expected format: base64url(header).base64url(payload).base64url(signature)

    Raises:
        MalformedTokenError: If the token does not have exactly three non-empty segments.
    """
    if not isinstance(token, str):
        raise MalformedTokenError("Token must be text")
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise MalformedTokenError(
            f"Token must have 3 '.'-separated segments, got {len(parts)}"
        )
    header_b64, payload_b64, sig_b64 = parts
    if not header_b64 or not payload_b64:
        raise MalformedTokenError("Token missing header or payload")
    if not sig_b64:
        raise MalformedTokenError("Token missing signature")
    return header_b64, payload_b64, sig_b64


def decode_token(token: str) -> DecodedToken:
    """
    Decode header and payload of a token without verifying its signature.

    Args:
        token: Compact token text.

    Returns:
        DecodedToken with header, payload and the raw signature segment.

    Raises:
        MalformedTokenError: If the segment count is not 3 or header/payload are
                             not base64url-encoded JSON objects.
    """
    header_b64, payload_b64, sig_b64 = _split_token(token)
    header = _decode_json_segment(header_b64, "header")
    payload = _decode_json_segment(payload_b64, "payload")
    return DecodedToken(header=header, payload=payload, signature=sig_b64)


def claim_time(value: Any) -> Optional[datetime]:
    """Convert a numeric "iat"/"exp" claim to a UTC datetime, or None if it is not a usable instant."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def token_metadata(token: str) -> Optional[ActivationKeyMetadata]:
    """
    Extract algorithm, issued-at and expiry from a token.

    Malformed input yields None rather than an exception so callers can keep
    working while the operator is still typing.

    Args:
        token: Compact token text.

    Returns:
        ActivationKeyMetadata, or None if the token is malformed.
    """
    try:
        decoded = decode_token(token)
    except MalformedTokenError:
        return None

    alg = decoded.header.get("alg")
    return ActivationKeyMetadata(
        algorithm=alg if isinstance(alg, str) else None,
        issued_at=claim_time(decoded.payload.get("iat")),
        expires_at=claim_time(decoded.payload.get("exp")),
    )


def is_expired(metadata: Optional[ActivationKeyMetadata], now: Optional[datetime] = None) -> bool:
    """Return True if the metadata carries an expiry that lies before now."""
    if metadata is None or metadata.expires_at is None:
        return False
    n = datetime.now(timezone.utc) if now is None else now
    return metadata.expires_at < n


def _epoch(instant: datetime) -> int:
    return int(instant.timestamp())


def sign_token(
    payload: Dict[str, Any],
    algorithm: str,
    key_pair: Optional[KeyPair],
    expiry: datetime,
) -> str:
    """
    Create a signed compact token from a payload.

    The "exp" claim is always taken from expiry (any "exp" already in the
    payload is replaced). "iat" keeps the payload's value when present and
    defaults to the current time otherwise. The caller's dict is not modified.

    Signatures are deterministic (RFC 6979) and encoded as the fixed-width
    r || s concatenation used by JWS.

    Args:
        payload: Claim set to sign.
        algorithm: Algorithm identifier from SUPPORTED_ALGORITHMS.
        key_pair: Key pair holding a PKCS#8 PEM private key.
        expiry: Expiry instant; truncated to whole seconds.

    Returns:
        Token text: base64url(header).base64url(payload).base64url(signature)

    Raises:
        UnsupportedKeyFormatError: If the private key is SEC1 encoded or the
                                   algorithm is not supported.
        SigningFailedError: If the key cannot be parsed or signing fails.
    """
    if key_pair is None or not (key_pair.private_key or "").strip():
        raise SigningFailedError("Private key is required")

    spec = get_algorithm(algorithm)

    claims = dict(payload)
    claims["exp"] = _epoch(expiry)
    if "iat" not in claims:
        claims["iat"] = _epoch(datetime.now(timezone.utc))

    try:
        sk = load_private_key(key_pair.private_key, algorithm)
    except UnsupportedKeyFormatError:
        raise
    except Exception as e:
        raise SigningFailedError(f"Failed to load private key: {e}") from e

    signing_input = encode_segments({"alg": spec.name}, claims)
    try:
        sig = sk.sign_deterministic(
            signing_input.encode("ascii"),
            hashfunc=spec.hashfunc,
            sigencode=sigencode_string,
        )
    except Exception as e:
        raise SigningFailedError(f"Signing failed: {e}") from e

    logger.debug("Signed %s activation key with key pair %s", spec.name, key_pair.id)
    return f"{signing_input}.{_b64u_encode(sig)}"


def verify_token(token: str, key_pair: KeyPair) -> DecodedToken:
    """
    Verify a token's signature with a key pair's public key.

    The algorithm is read from the token header, not supplied by the caller,
    and must be one of SUPPORTED_ALGORITHMS. Expiry is not checked.

    Args:
        token: Compact token text.
        key_pair: Key pair whose SPKI PEM public key is used.

    Returns:
        The decoded token.

    Raises:
        VerificationFailedError: If the token is malformed, the key cannot be
                                 used, or the signature does not match.
    """
    try:
        decoded = decode_token(token)
    except MalformedTokenError as e:
        raise VerificationFailedError(str(e)) from e

    algorithm = decoded.header.get("alg")
    try:
        spec = get_algorithm(algorithm)
        vk = load_public_key(key_pair.public_key, spec.name)
    except UnsupportedKeyFormatError as e:
        raise VerificationFailedError(str(e)) from e
    except Exception as e:
        raise VerificationFailedError(f"Failed to load public key: {e}") from e

    signing_input, _, sig_b64 = token.strip().rpartition(".")
    try:
        sig = _b64u_decode(sig_b64)
    except ValueError as e:
        raise VerificationFailedError("Signature is not base64url") from e

    try:
        vk.verify(
            sig,
            signing_input.encode("ascii"),
            hashfunc=spec.hashfunc,
            sigdecode=sigdecode_string,
        )
    except BadSignatureError as e:
        raise VerificationFailedError("Signature verification failed") from e
    except Exception as e:
        raise VerificationFailedError(f"Signature verification failed: {e}") from e

    return decoded


def validate_token(token: str, key_pair: Optional[KeyPair]) -> ValidationResult:
    """
    Check a token against a key pair and report the outcome as data.

    Args:
        token: Compact token text.
        key_pair: Selected key pair, or None when none is selected.

    Returns:
        ValidationResult; never raises for bad input.
    """
    if key_pair is None:
        return ValidationResult(is_valid=False, error=NO_MATCHING_KEY)
    try:
        verify_token(token, key_pair)
    except VerificationFailedError as e:
        return ValidationResult(is_valid=False, error=str(e))
    return ValidationResult(is_valid=True, error=None)


def find_validating_key(token: str, key_pairs: Iterable[KeyPair]) -> Optional[KeyPair]:
    """
    Return the first key pair, in the given order, that validates token.

    Args:
        token: Compact token text.
        key_pairs: Candidates, usually a repository's insertion order.

    Returns:
        The first matching KeyPair, or None.
    """
    for kp in key_pairs:
        if validate_token(token, kp).is_valid:
            return kp
    return None

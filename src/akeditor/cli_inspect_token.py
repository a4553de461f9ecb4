from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, Optional

from .log import configure_logging
from .repositories import get_key_pair_repository
from .token import MalformedTokenError, decode_token, is_expired, token_metadata, validate_token


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def main(argv: list[str] | None = None) -> int:
    """
    CLI command to decode an activation key and check its signature.

    Prints a JSON report with the header, payload, metadata and validation
    result. With --key-id the token is checked against that key pair only;
    otherwise every stored key pair is tried in the order they were added and
    the first one that validates is reported.

    Returns:
        Exit code: 0 if the signature is valid, 1 if not, 2 if the token is malformed.
    """
    ap = argparse.ArgumentParser(description="Decode and validate an activation key.")
    ap.add_argument("token", help="Activation key text, or '-' to read stdin")
    ap.add_argument("--key-id", default=None)
    ap.add_argument("--data-dir", default=None)
    args = ap.parse_args(argv)

    configure_logging()

    token = sys.stdin.read().strip() if args.token == "-" else args.token.strip()

    try:
        decoded = decode_token(token)
    except MalformedTokenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    repo = get_key_pair_repository(args.data_dir)
    if args.key_id:
        key_pair = repo.get_key_pair_by_id(args.key_id)
    else:
        key_pair = repo.find_validating_key(token)
    result = validate_token(token, key_pair)
    metadata = token_metadata(token)

    report: Dict[str, Any] = {
        "header": decoded.header,
        "payload": decoded.payload,
        "metadata": {
            "algorithm": metadata.algorithm if metadata else None,
            "issuedAt": _iso(metadata.issued_at) if metadata else None,
            "expiresAt": _iso(metadata.expires_at) if metadata else None,
            "expired": is_expired(metadata),
        },
        "validation": {
            "isValid": result.is_valid,
            "error": result.error,
            "keyId": key_pair.id if key_pair is not None else None,
            "keyName": key_pair.name if key_pair is not None else None,
        },
    }
    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0 if result.is_valid else 1


if __name__ == "__main__":
    raise SystemExit(main())

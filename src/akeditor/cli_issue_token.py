from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict

from .crypto import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS, UnsupportedKeyFormatError
from .log import configure_logging
from .repositories import get_key_pair_repository
from .token import SigningFailedError, sign_token


def _read_payload(value: str) -> Dict[str, Any]:
    """
    Parse the --payload argument.

    Args:
        value: JSON object text, or "@path" to read it from a file.

    Returns:
        The payload dictionary.

    Raises:
        ValueError: If the text is not a JSON object or the file cannot be read.
    """
    if value.startswith("@"):
        try:
            value = Path(value[1:]).expanduser().read_text(encoding="utf-8")
        except OSError as e:
            raise ValueError(f"Cannot read payload file: {e}") from e
    payload = json.loads(value)
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")
    return payload


def _parse_instant(value: str) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def main(argv: list[str] | None = None) -> int:
    """
    CLI command to sign an activation key with a stored key pair.

    The payload's "exp" claim is set from --expires, or from --days counted
    from now. "iat" is kept if the payload has one and set to now otherwise.
    The token is printed to stdout as base64url(header).base64url(payload).base64url(signature).

    Command-line arguments:
        --payload (required): JSON object text, or @file
        --key-id: Stored key pair id (default: first stored key pair)
        --days: Validity in days from now (default: 30)
        --expires: Explicit ISO-8601 expiry; overrides --days
        --algorithm: Signing algorithm (default: ES512)
        --data-dir: Storage directory

    Returns:
        Exit code: 0 on success, 1 if signing failed, 2 for invalid arguments.
    """
    ap = argparse.ArgumentParser(description="Sign an activation key.")
    ap.add_argument("--payload", required=True, help="JSON object text or @path/to/payload.json")
    ap.add_argument("--key-id", default=None)
    ap.add_argument("--days", type=int, default=30, help="expiry in days from now")
    ap.add_argument("--expires", default=None, help="ISO-8601 expiry instant")
    ap.add_argument("--algorithm", choices=sorted(SUPPORTED_ALGORITHMS), default=DEFAULT_ALGORITHM)
    ap.add_argument("--data-dir", default=None)
    args = ap.parse_args(argv)

    configure_logging()

    try:
        payload = _read_payload(args.payload)
        if args.expires:
            expiry = _parse_instant(args.expires)
        else:
            expiry = datetime.now(timezone.utc) + timedelta(days=args.days)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    repo = get_key_pair_repository(args.data_dir)
    if args.key_id:
        key_pair = repo.get_key_pair_by_id(args.key_id)
    else:
        key_pair = next(iter(repo.key_pairs), None)
    if key_pair is None:
        print("Error: no matching key pair; create one with akeditor-make-keys", file=sys.stderr)
        return 2

    try:
        token = sign_token(payload, args.algorithm, key_pair, expiry)
    except (UnsupportedKeyFormatError, SigningFailedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

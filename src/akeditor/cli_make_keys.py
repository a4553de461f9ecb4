from __future__ import annotations

import argparse
import sys

from .crypto import GENERATED_KEY_NAME, KeyGenerationFailedError, generate_keypair
from .io import KeyMaterialError, public_key_fingerprint_sha256, write_key_pair_files
from .log import configure_logging
from .repositories import get_key_pair_repository


def main(argv: list[str] | None = None) -> int:
    """
    CLI command to generate a new ES512 key pair and store it.

    Generates a P-521 key pair, adds it to the key pair repository and prints
    the stored id and the public key's SHA-256 fingerprint. With --out-dir the
    PEM files (private_key.pem, public_key.pem) are also written there.

    Args:
        argv: Command-line arguments (default: sys.argv). Useful for testing.

    Returns:
        Exit code: 0 on success, 1 if generation or writing failed.

    Command-line arguments:
        --name: Display name (default: 'Generated ES512 Key Pair')
        --out-dir: Optional directory for the PEM files
        --data-dir: Storage directory (default: $AKEDITOR_DATA_DIR or ~/.akeditor)
    """
    ap = argparse.ArgumentParser(description="Generate and store an ES512 key pair.")
    ap.add_argument("--name", default=GENERATED_KEY_NAME)
    ap.add_argument(
        "--out-dir",
        default=None,
        help="Also write private_key.pem and public_key.pem to this directory",
    )
    ap.add_argument("--data-dir", default=None)
    args = ap.parse_args(argv)

    configure_logging()

    try:
        generated = generate_keypair(args.name)
    except KeyGenerationFailedError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    repo = get_key_pair_repository(args.data_dir)
    kp = repo.add_key_pair(
        name=generated.name,
        private_key=generated.private_key,
        public_key=generated.public_key,
    )
    if repo.error is not None:
        print(f"Warning: key pair was not saved durably: {repo.error}", file=sys.stderr)

    if args.out_dir:
        try:
            priv_path, pub_path = write_key_pair_files(kp.material(), args.out_dir)
        except KeyMaterialError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(str(priv_path))
        print(str(pub_path))

    print(kp.id)
    print(public_key_fingerprint_sha256(kp.public_key))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

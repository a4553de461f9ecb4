from __future__ import annotations

import argparse
import sys

from .io import KeyMaterialError, read_key_pair_files, validate_key_pair
from .log import configure_logging
from .repositories import get_key_pair_repository


def main(argv: list[str] | None = None) -> int:
    """
    CLI command to import a key pair from a directory of PEM files.

    The directory must contain public_key.pem and private_key.pem. The key
    formats and name are checked (PKCS#8 private key, SPKI public key) before
    the pair is stored; the stored id is printed.

    Returns:
        Exit code: 0 on success, 1 if the files cannot be read, 2 if they fail validation.
    """
    ap = argparse.ArgumentParser(description="Import a key pair from PEM files.")
    ap.add_argument("directory", help="Directory holding public_key.pem and private_key.pem")
    ap.add_argument("--name", default=None, help="Display name (default: directory name)")
    ap.add_argument("--data-dir", default=None)
    args = ap.parse_args(argv)

    configure_logging()

    try:
        material = read_key_pair_files(args.directory, name=args.name)
    except KeyMaterialError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    errors = validate_key_pair(material)
    if errors:
        for field, msg in errors.items():
            print(f"Error: {field}: {msg}", file=sys.stderr)
        return 2

    repo = get_key_pair_repository(args.data_dir)
    kp = repo.import_key_pair(material)
    if repo.error is not None:
        print(f"Warning: key pair was not saved durably: {repo.error}", file=sys.stderr)

    print(kp.id)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

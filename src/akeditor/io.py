from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from .crypto import (
    PKCS8_PRIVATE_KEY_HEADER,
    SEC1_CONVERSION_MESSAGE,
    SEC1_PRIVATE_KEY_HEADER,
    SPKI_PUBLIC_KEY_HEADER,
)


PUBLIC_KEY_FILENAME = "public_key.pem"
PRIVATE_KEY_FILENAME = "private_key.pem"

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100


class KeyMaterialError(RuntimeError):
    """Exception raised when key files cannot be read or written."""

    pass


def validate_private_key_format(key: str) -> Optional[str]:
    """
    Check that text looks like a PKCS#8 PEM private key.

    Only the PEM armour is inspected; the key itself is parsed at sign time.

    Args:
        key: Candidate private key text.

    Returns:
        An error message, or None if the format is acceptable.
    """
    trimmed = (key or "").strip()
    if not trimmed:
        return "Private key is required"
    if SEC1_PRIVATE_KEY_HEADER in trimmed:
        return SEC1_CONVERSION_MESSAGE
    if PKCS8_PRIVATE_KEY_HEADER not in trimmed:
        return (
            "Invalid private key format. Key must be in PKCS#8 PEM format "
            f"(starting with '{PKCS8_PRIVATE_KEY_HEADER}')"
        )
    return None


def validate_public_key_format(key: str) -> Optional[str]:
    """
    Check that text looks like an SPKI PEM public key.

    Returns:
        An error message, or None if the format is acceptable.
    """
    trimmed = (key or "").strip()
    if not trimmed:
        return "Public key is required"
    if SPKI_PUBLIC_KEY_HEADER not in trimmed:
        return f"Invalid public key format. Key must start with '{SPKI_PUBLIC_KEY_HEADER}'"
    return None


def validate_key_pair_name(name: str) -> Optional[str]:
    trimmed = (name or "").strip()
    if not trimmed:
        return "Name is required"
    if len(trimmed) < MIN_NAME_LENGTH:
        return f"Name must be at least {MIN_NAME_LENGTH} characters"
    if len(trimmed) > MAX_NAME_LENGTH:
        return f"Name must be less than {MAX_NAME_LENGTH} characters"
    return None


def validate_key_pair(material: Mapping[str, str]) -> Dict[str, str]:
    """
    Validate the fields of a key pair form or import.

    Args:
        material: Mapping with "name", "publicKey" and "privateKey" (any may be missing).

    Returns:
        Dictionary of field name to error message; empty if everything is valid.
    """
    errors: Dict[str, str] = {}
    checks = (
        ("name", validate_key_pair_name),
        ("publicKey", validate_public_key_format),
        ("privateKey", validate_private_key_format),
    )
    for field, check in checks:
        msg = check(material.get(field) or "")
        if msg:
            errors[field] = msg
    return errors


def _normalize_pem_bytes(pem_bytes: bytes) -> bytes:
    """
    Normalize PEM-formatted bytes for consistent handling.

    Converts line endings to Unix style (\\n), removes leading/trailing whitespace,
    and ensures the data ends with a newline.
    """
    data = pem_bytes.replace(b"\r\n", b"\n").replace(b"\r", b"\n").strip()
    if not data.endswith(b"\n"):
        data += b"\n"
    return data


def public_key_fingerprint_sha256(pem: Union[str, bytes]) -> str:
    """
    Compute a SHA-256 fingerprint (hex) for a PEM public key.

    Args:
        pem: PEM-formatted public key text or bytes.

    Returns:
        SHA-256 fingerprint of the normalized PEM as a lowercase hex string.
    """
    if isinstance(pem, str):
        pem = pem.encode("ascii")
    return hashlib.sha256(_normalize_pem_bytes(pem)).hexdigest()


def write_key_pair_files(
    material: Mapping[str, str],
    out_dir: Union[str, os.PathLike],
) -> Tuple[Path, Path]:
    """
    Write a key pair's PEM files into a directory.

    Files use fixed names (public_key.pem, private_key.pem) so that
    read_key_pair_files() can load them back.

    Args:
        material: Mapping with "publicKey" and "privateKey".
        out_dir: Target directory; created if missing.

    Returns:
        Tuple of (private_key_path, public_key_path).

    Raises:
        KeyMaterialError: If the files cannot be written.
    """
    d = Path(out_dir).expanduser().resolve()
    priv_path = d / PRIVATE_KEY_FILENAME
    pub_path = d / PUBLIC_KEY_FILENAME
    try:
        d.mkdir(parents=True, exist_ok=True)
        priv_path.write_bytes(_normalize_pem_bytes(material["privateKey"].encode("ascii")))
        pub_path.write_bytes(_normalize_pem_bytes(material["publicKey"].encode("ascii")))
    except (OSError, UnicodeEncodeError) as e:
        raise KeyMaterialError(f"Failed to write key files to {d}") from e
    return priv_path, pub_path


def read_key_pair_files(
    directory: Union[str, os.PathLike],
    *,
    name: Optional[str] = None,
) -> Dict[str, str]:
    """
    Read public_key.pem and private_key.pem from a directory.

    Args:
        directory: Directory holding both files.
        name: Display name; defaults to the directory's name.

    Returns:
        Mapping with "name", "publicKey" and "privateKey".

    Raises:
        KeyMaterialError: If either file is missing or unreadable.
    """
    d = Path(directory).expanduser().resolve()
    pub_path = d / PUBLIC_KEY_FILENAME
    priv_path = d / PRIVATE_KEY_FILENAME

    if not (pub_path.is_file() and priv_path.is_file()):
        raise KeyMaterialError(
            f"Invalid key directory {d}. Expected {PUBLIC_KEY_FILENAME} and {PRIVATE_KEY_FILENAME} files."
        )

    try:
        public_key = pub_path.read_text(encoding="ascii").strip()
        private_key = priv_path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError) as e:
        raise KeyMaterialError(f"Failed to read key files from {d}") from e

    return {"name": name or d.name, "publicKey": public_key, "privateKey": private_key}

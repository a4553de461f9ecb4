from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Mapping, Optional, Type, TypeVar


R = TypeVar("R", bound="StoredRecord")


def new_id() -> str:
    """Return a random 128-bit identifier as canonical UUID text."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Return the current time as ISO-8601 UTC text with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class StoredRecord:
    """
    Base for records kept in a persisted collection.

    Subclasses map their attribute names to the JSON keys used on disk through
    JSON_FIELDS. Attributes missing from that mapping are stored under their
    own name.

    Attributes:
        id: Opaque unique identifier, assigned by the collection.
        created_at: ISO-8601 UTC creation timestamp, assigned by the collection.
    """

    JSON_FIELDS: ClassVar[Dict[str, str]] = {"created_at": "createdAt"}

    id: str
    created_at: str

    @classmethod
    def _json_key(cls, attr: str) -> str:
        return cls.JSON_FIELDS.get(attr, attr)

    @classmethod
    def field_names(cls) -> frozenset:
        return frozenset(f.name for f in dataclasses.fields(cls))

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the record to a JSON-ready dictionary.

        Optional attributes that are None are left out.

        Returns:
            Dictionary keyed by the on-disk field names.
        """
        out: Dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[self._json_key(f.name)] = value
        return out

    @classmethod
    def from_dict(cls: Type[R], data: Mapping[str, Any]) -> R:
        """
        Build a record from a stored dictionary.

        Args:
            data: Dictionary keyed by the on-disk field names.

        Returns:
            A new record instance.

        Raises:
            ValueError: If a required field is missing.
        """
        kwargs: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            key = cls._json_key(f.name)
            if key in data:
                kwargs[f.name] = data[key]
            elif f.default is dataclasses.MISSING:
                raise ValueError(f"{cls.__name__} record missing field {key!r}")
        return cls(**kwargs)


@dataclass(frozen=True)
class KeyPair(StoredRecord):
    """
    A named asymmetric key pair used to sign and verify activation keys.

    The keys are stored as text and are not checked when saved; a mismatched or
    unparseable pair only fails when it is used to sign or verify.

    Attributes:
        name: Display name.
        private_key: PKCS#8 PEM private key. Must be kept secret.
        public_key: SPKI PEM public key.
    """

    JSON_FIELDS: ClassVar[Dict[str, str]] = {
        "created_at": "createdAt",
        "private_key": "privateKey",
        "public_key": "publicKey",
    }

    name: str
    private_key: str
    public_key: str

    def material(self) -> Dict[str, str]:
        """Return the {name, publicKey, privateKey} triple used for import/export."""
        return {
            "name": self.name,
            "publicKey": self.public_key,
            "privateKey": self.private_key,
        }


@dataclass(frozen=True)
class Template(StoredRecord):
    """
    A saved activation key that can seed a new editor session.

    The activation key is not required to validate: its signing key may have
    been deleted, and templates are usually stored already expired.

    Attributes:
        name: Display name, unique case-insensitively by convention only.
        activation_key: Compact signed token text.
        description: Optional free text.
    """

    JSON_FIELDS: ClassVar[Dict[str, str]] = {
        "created_at": "createdAt",
        "activation_key": "activationKey",
    }

    name: str
    activation_key: str
    description: Optional[str] = None

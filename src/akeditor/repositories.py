from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import resolve_data_dir
from .models import KeyPair, Template, now_iso
from .store import JsonFileStorage, PersistedCollection, StorageUnavailableError
from .token import find_validating_key


KEY_PAIRS_STORAGE_KEY = "keyPairs"
TEMPLATES_STORAGE_KEY = "akTemplates"

_ANAPHORA_FREE_TOKEN = (
    "eyJhbGciOiJFUzUxMiIsInR5cCI6IkpXVCJ9."
    "eyJleHAiOjg4MDYxMjEyODAwLCJpc3MiOiJodHRwczovL2FwaS5iZXNodS50ZWNoIiwiaWF0IjoxNjYxMzU2MTAx"
    "LCJqdGkiOiJhbmFwaG9yYV9saWNfMjViMmFhYTgtMTQwMS00YjhmLThkMGYtNmMzMTdmOWJhNjcwIiwiYXVkIjoi"
    "QW5hcGhvcmEiLCJzdWIiOiIxMTExMTExMS0xMTExLTExMTEtMTExMS0xMTExMTExMSIsImxpY2Vuc29yIjp7Im5h"
    "bWUiOiJBbmFwaG9yYSIsImNvbnRhY3QiOlsic3VwcG9ydEByZWFkb25seXJlc3QuY29tIiwiZmluYW5jZUByZWFk"
    "b25seXJlc3QuY29tIl0sImlzc3VlciI6InN1cHBvcnRAcmVhZG9ubHlyZXN0LmNvbSJ9LCJsaWNlbnNlZSI6eyJu"
    "YW1lIjoiQW5vbnltb3VzIEZyZWUgVXNlciIsImJ1eWluZ19mb3IiOm51bGwsImJpbGxpbmdfZW1haWwiOiJ1bmtu"
    "b3duQGFuYXBob3JhLmNvbSIsImFsdF9lbWFpbHMiOltdLCJhZGRyZXNzIjpbIlVua25vd24iXX0sImxpY2Vuc2Ui"
    "OnsiY2x1c3Rlcl91dWlkIjoiKiIsImVkaXRpb24iOiJmcmVlIiwiZWRpdGlvbl9uYW1lIjoiRnJlZSIsImlzVHJp"
    "YWwiOmZhbHNlfX0."
    "ATAB81zkWRxTdpSD_23tcFxba81OCrjdtcGlx_yXwa2VSvJAx7rWQYO2VM2N8zeknA01SzYpPP2o_FXzP3TCEo4i"
    "ABRof2G1u0iD1AFf5Y0m_TYPs89acR5Fztb46wSBwsj4L1ONal0y8xHYfJC54SKwdXJV4XTJwIP2tBVcTl9QNAfn"
)


def default_templates() -> List[Template]:
    """Built-in example templates written to an uninitialised template store."""
    return [
        Template(
            id="default-anaphora-free",
            created_at=now_iso(),
            name="Anaphora Free Edition",
            description="Example activation key for Anaphora Free edition",
            activation_key=_ANAPHORA_FREE_TOKEN,
        )
    ]


class KeyPairRepository:
    """
    Key pairs available for signing and validation, in insertion order.

    Key material is stored as given; it is only parsed when used.
    """

    def __init__(self, storage: Any) -> None:
        self._collection: PersistedCollection[KeyPair] = PersistedCollection(
            storage,
            KEY_PAIRS_STORAGE_KEY,
            KeyPair,
            entity_name="key pairs",
        )

    @property
    def key_pairs(self) -> List[KeyPair]:
        return self._collection.items

    @property
    def error(self) -> Optional[StorageUnavailableError]:
        """Last failure to persist the collection, or None."""
        return self._collection.error

    def reload(self) -> List[KeyPair]:
        return self._collection.load()

    def add_key_pair(self, *, name: str, private_key: str, public_key: str) -> KeyPair:
        return self._collection.add(name=name, private_key=private_key, public_key=public_key)

    def update_key_pair(self, key_pair_id: str, **changes: Any) -> None:
        self._collection.update(key_pair_id, **changes)

    def delete_key_pair(self, key_pair_id: str) -> None:
        self._collection.remove(key_pair_id)

    def get_key_pair_by_id(self, key_pair_id: Optional[str]) -> Optional[KeyPair]:
        return self._collection.find_by_id(key_pair_id)

    def import_key_pair(self, material: Mapping[str, str]) -> KeyPair:
        """
        Store a key pair received from an import collaborator.

        Args:
            material: Mapping with "name", "publicKey" and "privateKey".

        Returns:
            The stored KeyPair.

        Raises:
            ValueError: If a field is missing.
        """
        missing = [k for k in ("name", "publicKey", "privateKey") if k not in material]
        if missing:
            raise ValueError(f"Key pair import missing field(s): {', '.join(missing)}")
        return self.add_key_pair(
            name=material["name"],
            private_key=material["privateKey"],
            public_key=material["publicKey"],
        )

    def export_key_pair(self, key_pair_id: str) -> Optional[Dict[str, str]]:
        """Return the {name, publicKey, privateKey} triple of a stored key pair."""
        kp = self.get_key_pair_by_id(key_pair_id)
        return kp.material() if kp is not None else None

    def find_validating_key(self, token: str) -> Optional[KeyPair]:
        """
        Find the key pair that validates token.

        When several stored key pairs validate the same token, the earliest
        added one wins.
        """
        return find_validating_key(token, self._collection.items)


class TemplateRepository:
    """Saved activation-key templates, seeded once with the built-in examples."""

    def __init__(self, storage: Any, *, seed_defaults: bool = True) -> None:
        self._collection: PersistedCollection[Template] = PersistedCollection(
            storage,
            TEMPLATES_STORAGE_KEY,
            Template,
            entity_name="templates",
            defaults=default_templates() if seed_defaults else (),
        )

    @property
    def templates(self) -> List[Template]:
        return self._collection.items

    @property
    def error(self) -> Optional[StorageUnavailableError]:
        return self._collection.error

    def reload(self) -> List[Template]:
        return self._collection.load()

    def add_template(
        self,
        *,
        name: str,
        activation_key: str,
        description: Optional[str] = None,
    ) -> Template:
        return self._collection.add(
            name=name, activation_key=activation_key, description=description
        )

    def update_template(self, template_id: str, **changes: Any) -> None:
        self._collection.update(template_id, **changes)

    def delete_template(self, template_id: str) -> None:
        self._collection.remove(template_id)

    def get_template_by_id(self, template_id: Optional[str]) -> Optional[Template]:
        return self._collection.find_by_id(template_id)

    def find_template_by_name(self, name: str) -> Optional[Template]:
        """Return the first template whose name matches, ignoring case and surrounding spaces."""
        wanted = (name or "").strip().lower()
        if not wanted:
            return None
        for t in self._collection.items:
            if t.name.strip().lower() == wanted:
                return t
        return None


_REPOSITORIES: Dict[Tuple[str, str], Union[KeyPairRepository, TemplateRepository]] = {}


def get_key_pair_repository(
    data_dir: Optional[Union[str, os.PathLike]] = None,
) -> KeyPairRepository:
    """
    Return the process-wide key pair repository for a data directory.

    Args:
        data_dir: Storage directory; see config.resolve_data_dir().

    Returns:
        The shared KeyPairRepository backed by "<data_dir>/keyPairs.json".
    """
    path = resolve_data_dir(data_dir)
    cache_key = (str(path), KEY_PAIRS_STORAGE_KEY)
    repo = _REPOSITORIES.get(cache_key)
    if repo is None:
        repo = KeyPairRepository(JsonFileStorage(path))
        _REPOSITORIES[cache_key] = repo
    return repo  # type: ignore[return-value]


def get_template_repository(
    data_dir: Optional[Union[str, os.PathLike]] = None,
) -> TemplateRepository:
    """Return the process-wide template repository for a data directory."""
    path = resolve_data_dir(data_dir)
    cache_key = (str(path), TEMPLATES_STORAGE_KEY)
    repo = _REPOSITORIES.get(cache_key)
    if repo is None:
        repo = TemplateRepository(JsonFileStorage(path))
        _REPOSITORIES[cache_key] = repo
    return repo  # type: ignore[return-value]

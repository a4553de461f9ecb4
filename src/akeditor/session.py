from __future__ import annotations

import asyncio
import enum
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from .config import EXPIRED_TEMPLATE_OFFSET
from .crypto import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS
from .models import KeyPair, Template
from .repositories import KeyPairRepository, TemplateRepository
from .token import (
    ActivationKeyMetadata,
    MalformedTokenError,
    SigningFailedError,
    ValidationResult,
    claim_time,
    decode_token,
    format_payload,
    is_expired,
    sign_token,
    token_metadata,
    validate_token,
)


logger = logging.getLogger(__name__)

EMPTY_PAYLOAD_TEXT = "{}"

Verifier = Callable[[str, Optional[KeyPair]], Awaitable[ValidationResult]]


class EditorError(RuntimeError):
    """Exception raised when an editor action cannot run in the current state."""

    pass


class PayloadError(EditorError):
    """Exception raised when the edited payload is not a JSON object."""

    pass


class TemplateNameConflictError(EditorError):
    """Exception raised when saving would overwrite a different template of the same name."""

    pass


class SessionState(enum.Enum):
    EMPTY = "empty"
    LOADED = "loaded"


async def verify_in_thread(token: str, key_pair: Optional[KeyPair]) -> ValidationResult:
    """Run validate_token() in a worker thread so the event loop stays responsive."""
    return await asyncio.to_thread(validate_token, token, key_pair)


class EditorSession:
    """
    Editing context for one activation key.

    The session is EMPTY until a token is entered and LOADED afterwards. A
    token that fails to decode or validate still counts as loaded; the failure
    shows up as ``metadata is None`` or ``validation.is_valid is False``.

    Validation runs asynchronously whenever the token or the selected key
    changes. Each run is tagged with an epoch and only the newest run may
    store its result, so a slow check for a previous token or key can never
    overwrite the result for the current one.

    Payload, expiry and issued-at edits are local until ``sign()`` is called;
    they do not trigger validation, which always describes the current token.

    The session keeps only the selected key pair's id and looks the key pair
    up in the repository when it is needed.

    Attributes:
        input_text: Raw text last entered as the token.
        token: Current token ("" when empty).
        payload_text: Payload as edited, JSON text.
        algorithm: Algorithm used by sign().
        expiry: Expiry applied on sign(), or None to keep the payload's.
        issued: Issued-at applied on sign(), or None to keep the payload's.
        selected_key_id: Id of the key pair used to sign and validate.
        metadata: Metadata of the current token, or None.
        validation: Latest validation result for (token, selected key), or None.
        source_template_id: Template the session was seeded from, if any.
    """

    def __init__(
        self,
        key_pairs: KeyPairRepository,
        templates: Optional[TemplateRepository] = None,
        *,
        verifier: Optional[Verifier] = None,
    ) -> None:
        self._key_pairs = key_pairs
        self._templates = templates
        self._verifier: Verifier = verifier or verify_in_thread
        self._sign_lock: Optional[asyncio.Lock] = None
        self._epoch = 0

        first = key_pairs.key_pairs[:1]
        self.selected_key_id: Optional[str] = first[0].id if first else None
        self._reset()

    def _reset(self) -> None:
        self.input_text = ""
        self.token = ""
        self.payload_text = EMPTY_PAYLOAD_TEXT
        self.algorithm = DEFAULT_ALGORITHM
        self.expiry: Optional[datetime] = None
        self.issued: Optional[datetime] = None
        self.metadata: Optional[ActivationKeyMetadata] = None
        self.validation: Optional[ValidationResult] = None
        self.source_template_id: Optional[str] = None
        self._baseline_payload_text = EMPTY_PAYLOAD_TEXT

    @property
    def state(self) -> SessionState:
        return SessionState.LOADED if self.token else SessionState.EMPTY

    @property
    def is_dirty(self) -> bool:
        """True if the payload was edited since the token was loaded or signed."""
        return bool(self.token) and self.payload_text != self._baseline_payload_text

    @property
    def is_expired(self) -> bool:
        return is_expired(self.metadata)

    @property
    def selected_key_pair(self) -> Optional[KeyPair]:
        return self._key_pairs.get_key_pair_by_id(self.selected_key_id)

    @property
    def source_template(self) -> Optional[Template]:
        if self._templates is None:
            return None
        return self._templates.get_template_by_id(self.source_template_id)

    async def set_input(self, text: str) -> Optional[ValidationResult]:
        """
        Load token text into the session and validate it.

        Empty text clears the session. Otherwise the token's algorithm, expiry
        and issued-at become the session defaults when present (the algorithm
        only if supported), and its payload is loaded for editing; a payload
        that cannot be decoded loads as an empty object.

        Args:
            text: Raw token text.

        Returns:
            The validation result, or None if it was superseded before completing.
        """
        if not text:
            self.clear()
            return None

        metadata = token_metadata(text)
        if metadata is not None:
            if metadata.algorithm in SUPPORTED_ALGORITHMS:
                self.algorithm = metadata.algorithm
            if metadata.expires_at is not None:
                self.expiry = metadata.expires_at
            if metadata.issued_at is not None:
                self.issued = metadata.issued_at

        try:
            payload_text = format_payload(decode_token(text).payload)
        except MalformedTokenError:
            payload_text = EMPTY_PAYLOAD_TEXT

        self.input_text = text
        self.token = text
        self.metadata = metadata
        self.payload_text = payload_text
        self._baseline_payload_text = payload_text
        self.validation = None

        return await self._revalidate()

    async def select_key(self, key_id: Optional[str]) -> Optional[ValidationResult]:
        """
        Select the key pair used for validation and signing.

        The current token, if any, is validated again against the new key.

        Returns:
            The validation result, or None if nothing is loaded or the check was superseded.
        """
        self.selected_key_id = key_id or None
        if not self.token:
            return None
        return await self._revalidate()

    def set_payload_text(self, text: str) -> None:
        self.payload_text = text

    def set_expiry(self, instant: Optional[datetime]) -> None:
        self.expiry = instant

    def set_issued(self, instant: Optional[datetime]) -> None:
        self.issued = instant

    def set_algorithm(self, algorithm: str) -> None:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise EditorError(f"Unsupported algorithm {algorithm!r}")
        self.algorithm = algorithm

    def clear(self) -> None:
        """Return to EMPTY, keeping only the selected key. Pending validations are dropped."""
        self._epoch += 1
        self._reset()

    async def _revalidate(self) -> Optional[ValidationResult]:
        self._epoch += 1
        epoch = self._epoch
        token = self.token
        key_pair = self.selected_key_pair

        try:
            result = await self._verifier(token, key_pair)
        except Exception as e:
            logger.warning("Activation key validation raised: %s", e)
            result = ValidationResult(is_valid=False, error=str(e) or "Invalid signature")

        if epoch != self._epoch:
            logger.debug("Discarding stale validation result (epoch %d, current %d)", epoch, self._epoch)
            return None

        self.validation = result
        return result

    def _parse_payload(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self.payload_text)
        except ValueError as e:
            raise PayloadError(f"Invalid JSON payload: {e}") from e
        if not isinstance(payload, dict):
            raise PayloadError("Invalid JSON payload: expected a JSON object")
        return payload

    def _require_key_pair(self) -> KeyPair:
        key_pair = self.selected_key_pair
        if key_pair is None:
            raise SigningFailedError("No signing key selected")
        return key_pair

    def _lock(self) -> asyncio.Lock:
        if self._sign_lock is None:
            self._sign_lock = asyncio.Lock()
        return self._sign_lock

    async def sign(self) -> str:
        """
        Sign the edited payload and load the result as the current token.

        The session's expiry and issued-at replace the payload's "exp"/"iat"
        only when set. Without any expiry the token expires immediately.
        Calls on one session run one at a time; if the token or payload changed
        while signing, the new token is returned but not loaded.

        Returns:
            The newly signed token.

        Raises:
            PayloadError: If the payload text is not a JSON object.
            SigningFailedError: If no key is selected or signing fails.
            UnsupportedKeyFormatError: If the private key is SEC1 encoded.
        """
        async with self._lock():
            payload = self._parse_payload()
            key_pair = self._require_key_pair()

            if self.expiry is not None:
                payload["exp"] = int(self.expiry.timestamp())
            if self.issued is not None:
                payload["iat"] = int(self.issued.timestamp())

            expiry = (
                self.expiry
                or claim_time(payload.get("exp"))
                or datetime.now(timezone.utc)
            )

            token_before, payload_before = self.token, self.payload_text
            token = await asyncio.to_thread(
                sign_token, payload, self.algorithm, key_pair, expiry
            )

            if (self.token, self.payload_text) != (token_before, payload_before):
                logger.debug("Session changed while signing; new token not loaded")
                return token

            await self.set_input(token)
            return token

    async def load_template(self, template_id: str) -> Optional[ValidationResult]:
        """
        Seed the session from a saved template.

        Raises:
            EditorError: If no template repository is attached or the id is unknown.
        """
        if self._templates is None:
            raise EditorError("No template repository attached to this session")
        template = self._templates.get_template_by_id(template_id)
        if template is None:
            raise EditorError(f"Unknown template {template_id!r}")
        self.source_template_id = template.id
        return await self.set_input(template.activation_key)

    async def _sign_expired_copy(self, expire_before: timedelta) -> str:
        payload = self._parse_payload()
        key_pair = self._require_key_pair()
        expired_at = datetime.now(timezone.utc) - expire_before
        if self.issued is not None:
            payload["iat"] = int(self.issued.timestamp())
        return await asyncio.to_thread(
            sign_token, payload, self.algorithm, key_pair, expired_at
        )

    async def save_template(
        self,
        name: str,
        description: Optional[str] = None,
        *,
        overwrite: bool = False,
        as_expired: bool = False,
        expire_before: Optional[timedelta] = None,
    ) -> Template:
        """
        Store the current activation key as a template.

        A template with the same name (ignoring case) is updated in place. If
        that template is not the one this session was loaded from, overwrite
        must be True.

        With as_expired (or an explicit expire_before) and a current token that
        has not expired, the stored key is a fresh signature of the edited
        payload with "exp" set to now - expire_before, which defaults to
        EXPIRED_TEMPLATE_OFFSET. The session itself is not changed.

        Args:
            name: Template name.
            description: Optional description; blank text is stored as None.
            overwrite: Allow replacing a different template with the same name.
            as_expired: Store an already-expired copy of the current token.
            expire_before: How far in the past the stored copy should expire.

        Returns:
            The stored Template.

        Raises:
            EditorError: If no template repository is attached, the name is
                         blank or no token is loaded.
            TemplateNameConflictError: If the name belongs to another template
                                       and overwrite is False.
            PayloadError / SigningFailedError: If the expired copy cannot be signed.
        """
        if self._templates is None:
            raise EditorError("No template repository attached to this session")

        trimmed = (name or "").strip()
        if not trimmed:
            raise EditorError("Please enter a template name")
        if not self.token:
            raise EditorError("No activation key to save")

        existing = self._templates.find_template_by_name(trimmed)
        if existing is not None and existing.id != self.source_template_id and not overwrite:
            raise TemplateNameConflictError(
                f'A template named "{trimmed}" already exists'
            )

        activation_key = self.token
        if (as_expired or expire_before is not None) and not self.is_expired:
            activation_key = await self._sign_expired_copy(
                expire_before if expire_before is not None else EXPIRED_TEMPLATE_OFFSET
            )

        desc = (description or "").strip() or None
        if existing is not None:
            self._templates.update_template(
                existing.id,
                name=trimmed,
                description=desc,
                activation_key=activation_key,
            )
            return self._templates.get_template_by_id(existing.id) or existing

        return self._templates.add_template(
            name=trimmed, activation_key=activation_key, description=desc
        )

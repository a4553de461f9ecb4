from .models import KeyPair, Template
from .crypto import (
    generate_keypair,
    load_private_key,
    load_public_key,
    public_key_from_private,
    SUPPORTED_ALGORITHMS,
    DEFAULT_ALGORITHM,
    UnsupportedKeyFormatError,
    KeyGenerationFailedError,
)
from .token import (
    decode_token,
    token_metadata,
    sign_token,
    verify_token,
    validate_token,
    find_validating_key,
    is_expired,
    DecodedToken,
    ActivationKeyMetadata,
    ValidationResult,
    MalformedTokenError,
    SigningFailedError,
    VerificationFailedError,
)
from .store import (
    PersistedCollection,
    JsonFileStorage,
    MemoryStorage,
    StorageUnavailableError,
)
from .repositories import (
    KeyPairRepository,
    TemplateRepository,
    get_key_pair_repository,
    get_template_repository,
)
from .io import (
    validate_key_pair,
    validate_private_key_format,
    validate_public_key_format,
    read_key_pair_files,
    write_key_pair_files,
    public_key_fingerprint_sha256,
    KeyMaterialError,
)
from .session import (
    EditorSession,
    SessionState,
    EditorError,
    PayloadError,
    TemplateNameConflictError,
)

__version__ = "0.1.0"

__all__ = [
    "KeyPair",
    "Template",
    "generate_keypair",
    "load_private_key",
    "load_public_key",
    "public_key_from_private",
    "SUPPORTED_ALGORITHMS",
    "DEFAULT_ALGORITHM",
    "UnsupportedKeyFormatError",
    "KeyGenerationFailedError",
    "decode_token",
    "token_metadata",
    "sign_token",
    "verify_token",
    "validate_token",
    "find_validating_key",
    "is_expired",
    "DecodedToken",
    "ActivationKeyMetadata",
    "ValidationResult",
    "MalformedTokenError",
    "SigningFailedError",
    "VerificationFailedError",
    "PersistedCollection",
    "JsonFileStorage",
    "MemoryStorage",
    "StorageUnavailableError",
    "KeyPairRepository",
    "TemplateRepository",
    "get_key_pair_repository",
    "get_template_repository",
    "validate_key_pair",
    "validate_private_key_format",
    "validate_public_key_format",
    "read_key_pair_files",
    "write_key_pair_files",
    "public_key_fingerprint_sha256",
    "KeyMaterialError",
    "EditorSession",
    "SessionState",
    "EditorError",
    "PayloadError",
    "TemplateNameConflictError",
]

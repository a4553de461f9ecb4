from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union


DATA_DIR_ENV = "AKEDITOR_DATA_DIR"
LOG_LEVEL_ENV = "AKEDITOR_LOG_LEVEL"
EXPIRED_TEMPLATE_HOURS_ENV = "AKEDITOR_EXPIRED_TEMPLATE_HOURS"

DEFAULT_DATA_DIR = "~/.akeditor"

LOG_LEVEL = os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper() or "WARNING"

# How far in the past "save as expired" templates are re-signed.
EXPIRED_TEMPLATE_OFFSET = timedelta(
    hours=float(os.environ.get(EXPIRED_TEMPLATE_HOURS_ENV, "24"))
)


def resolve_data_dir(data_dir: Optional[Union[str, os.PathLike]] = None) -> Path:
    """
    Resolve the directory holding the persisted key pair and template collections.

    Resolution order:
      1) the explicit data_dir argument
      2) the AKEDITOR_DATA_DIR environment variable
      3) ~/.akeditor

    Args:
        data_dir: Optional explicit directory.

    Returns:
        Absolute Path of the storage directory (not created here).
    """
    if data_dir is None:
        data_dir = os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR
    return Path(data_dir).expanduser().resolve()

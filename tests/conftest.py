import pytest

from akeditor import repositories
from akeditor.testing_utils import (  # noqa: F401
    generated_key_pair,
    key_pair_repo,
    memory_storage,
    other_key_pair,
    stored_key_pair,
    template_repo,
)


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Point the default storage directory at a temp dir and forget cached repositories."""
    data_dir = tmp_path / "data"
    monkeypatch.setenv("AKEDITOR_DATA_DIR", str(data_dir))
    monkeypatch.setattr(repositories, "_REPOSITORIES", {})
    return data_dir

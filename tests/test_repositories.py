import json
from datetime import datetime, timezone

import pytest

from akeditor.repositories import (
    KeyPairRepository,
    TemplateRepository,
    get_key_pair_repository,
    get_template_repository,
)
from akeditor.store import MemoryStorage
from akeditor.token import sign_token


def test_key_pair_crud(key_pair_repo):
    kp = key_pair_repo.add_key_pair(name="Main", private_key="priv", public_key="pub")
    assert key_pair_repo.get_key_pair_by_id(kp.id) == kp

    key_pair_repo.update_key_pair(kp.id, name="Renamed")
    assert key_pair_repo.get_key_pair_by_id(kp.id).name == "Renamed"

    key_pair_repo.delete_key_pair(kp.id)
    assert key_pair_repo.get_key_pair_by_id(kp.id) is None
    assert key_pair_repo.key_pairs == []


def test_key_material_is_not_validated_on_write(key_pair_repo):
    kp = key_pair_repo.add_key_pair(name="junk", private_key="nope", public_key="nope")
    assert key_pair_repo.get_key_pair_by_id(kp.id).private_key == "nope"


def test_import_and_export(key_pair_repo):
    kp = key_pair_repo.import_key_pair({"name": "Imported", "publicKey": "PUB", "privateKey": "PRIV"})
    assert key_pair_repo.export_key_pair(kp.id) == {
        "name": "Imported",
        "publicKey": "PUB",
        "privateKey": "PRIV",
    }
    assert key_pair_repo.export_key_pair("missing") is None

    with pytest.raises(ValueError):
        key_pair_repo.import_key_pair({"name": "half", "publicKey": "PUB"})


def test_find_validating_key_prefers_earliest(key_pair_repo, generated_key_pair, other_key_pair):
    other = key_pair_repo.add_key_pair(
        name="other", private_key=other_key_pair.private_key, public_key=other_key_pair.public_key
    )
    first = key_pair_repo.add_key_pair(
        name="first", private_key=generated_key_pair.private_key, public_key=generated_key_pair.public_key
    )
    key_pair_repo.add_key_pair(
        name="copy", private_key=generated_key_pair.private_key, public_key=generated_key_pair.public_key
    )
    token = sign_token({}, "ES512", first, datetime(2030, 1, 1, tzinfo=timezone.utc))

    assert key_pair_repo.find_validating_key(token).id == first.id
    assert key_pair_repo.find_validating_key("abc") is None
    assert other.id != first.id


def test_template_defaults_seeded():
    storage = MemoryStorage()
    repo = TemplateRepository(storage)
    assert [t.id for t in repo.templates] == ["default-anaphora-free"]
    assert repo.templates[0].name == "Anaphora Free Edition"
    stored = json.loads(storage.read("akTemplates"))
    assert stored[0]["activationKey"].startswith("eyJhbGciOiJFUzUxMiIs")


def test_template_crud_and_lookup_by_name(template_repo):
    t = template_repo.add_template(name="Enterprise Trial", activation_key="a.b.c")
    assert t.description is None
    assert template_repo.find_template_by_name("  enterprise trial ") == t
    assert template_repo.find_template_by_name("") is None
    assert template_repo.find_template_by_name("other") is None

    template_repo.update_template(t.id, description="30 days")
    assert template_repo.get_template_by_id(t.id).description == "30 days"

    template_repo.delete_template(t.id)
    assert template_repo.templates == []


def test_repositories_share_storage(memory_storage):
    a = KeyPairRepository(memory_storage)
    b = KeyPairRepository(memory_storage)
    kp = a.add_key_pair(name="shared", private_key="p", public_key="P")
    b.reload()
    assert b.get_key_pair_by_id(kp.id) == kp


def test_process_wide_repositories(isolated_data_dir, tmp_path):
    repo = get_key_pair_repository()
    assert get_key_pair_repository() is repo
    assert get_key_pair_repository(tmp_path / "elsewhere") is not repo

    repo.add_key_pair(name="disk", private_key="p", public_key="P")
    assert (isolated_data_dir / "keyPairs.json").is_file()

    templates = get_template_repository()
    assert get_template_repository() is templates
    assert (isolated_data_dir / "akTemplates.json").is_file()

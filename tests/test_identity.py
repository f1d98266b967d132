import json

from identity import IDENTITY_STORAGE_KEY, IdentityStore, JsonFileStorage


class BrokenStorage:
    def get(self, key, default=None):
        raise OSError("storage is read-only")

    def __setitem__(self, key, value):
        raise OSError("storage is read-only")


def test_new_identity_is_generated_and_persisted(tmp_path):
    path = tmp_path / "nested" / "identity.json"
    identity = IdentityStore(JsonFileStorage(str(path))).resolve()

    assert identity.persisted
    assert json.loads(path.read_text())[IDENTITY_STORAGE_KEY] == identity.id


def test_persisted_identity_is_reused(tmp_path):
    path = str(tmp_path / "identity.json")
    first = IdentityStore(JsonFileStorage(path)).resolve()
    second = IdentityStore(JsonFileStorage(path)).resolve()

    assert first.id == second.id


def test_resolve_is_stable_within_process():
    store = IdentityStore({})

    assert store.resolve() is store.resolve()


def test_mapping_storage_is_used():
    storage = {IDENTITY_STORAGE_KEY: "device-1"}

    assert IdentityStore(storage).resolve().id == "device-1"


def test_unavailable_storage_falls_back_to_session_identity():
    identity = IdentityStore(BrokenStorage()).resolve()

    assert identity.id
    assert not identity.persisted


def test_missing_storage_falls_back_to_session_identity():
    identity = IdentityStore(None).resolve()

    assert not identity.persisted


def test_corrupt_file_falls_back_to_session_identity(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text("[1, 2")

    identity = IdentityStore(JsonFileStorage(str(path))).resolve()

    assert not identity.persisted

"""
Credential store tests
"""
import pytest

from conftest import STORE_ID
from app.config import settings
from app.exceptions import AuthError
from app.models import StoreConnectionStatus, StoreCredential
from app.services.credentials import (
    client_for_store,
    decrypt_token,
    delete_store_credential,
    encrypt_token,
    get_store_credential,
    get_store_info,
    list_active_store_ids,
    save_store_credential,
    set_store_status,
    update_store_info,
)


class TestCredentialStore:
    def test_token_encrypted_at_rest(self, db_session, store_credential):
        row = db_session.query(StoreCredential).one()
        assert row.access_token_encrypted != "tok-42"
        assert decrypt_token(row.access_token_encrypted) == "tok-42"
        assert decrypt_token(encrypt_token("abc")) == "abc"

    def test_get_store_credential(self, db_session, store_credential):
        access = get_store_credential(db_session, STORE_ID)

        assert access.store_id == STORE_ID
        assert access.access_token == "tok-42"
        assert access.status == StoreConnectionStatus.ACTIVE
        assert access.from_env is False

    def test_unknown_store(self, db_session):
        assert get_store_credential(db_session, "999") is None
        assert get_store_credential(db_session, "") is None

    def test_save_replaces_and_reactivates(self, db_session, store_credential):
        set_store_status(db_session, STORE_ID, StoreConnectionStatus.UNINSTALLED)

        save_store_credential(db_session, STORE_ID, "tok-new")

        access = get_store_credential(db_session, STORE_ID)
        assert access.access_token == "tok-new"
        assert access.status == StoreConnectionStatus.ACTIVE
        assert db_session.query(StoreCredential).count() == 1

    def test_env_fallback(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "TIENDANUBE_STORE_ID", "77")
        monkeypatch.setattr(settings, "TIENDANUBE_ACCESS_TOKEN", "env-token")

        access = get_store_credential(db_session, "77")

        assert access.access_token == "env-token"
        assert access.from_env is True
        assert get_store_credential(db_session, "78") is None
        assert list_active_store_ids(db_session) == ["77"]

    def test_undecryptable_token(self, db_session):
        db_session.add(StoreCredential(store_id="5", access_token_encrypted="garbage"))
        db_session.commit()
        assert get_store_credential(db_session, "5") is None

    def test_store_info_snapshot(self, db_session, store_credential):
        assert get_store_info(db_session, STORE_ID) is None

        assert update_store_info(db_session, STORE_ID, {"id": 42, "business_id": "30-1234"}) is True

        assert get_store_info(db_session, STORE_ID) == {"id": 42, "business_id": "30-1234"}
        assert get_store_credential(db_session, STORE_ID).business_id == "30-1234"
        assert update_store_info(db_session, "999", {}) is False

    def test_list_active_store_ids(self, db_session, store_credential):
        save_store_credential(db_session, "43", "tok-43")
        set_store_status(db_session, "43", StoreConnectionStatus.SUSPENDED)

        assert list_active_store_ids(db_session) == [STORE_ID]

    def test_set_status_without_credential(self, db_session):
        assert set_store_status(db_session, "999", StoreConnectionStatus.SUSPENDED) is False

    def test_delete(self, db_session, store_credential):
        assert delete_store_credential(db_session, STORE_ID) is True
        assert delete_store_credential(db_session, STORE_ID) is False


class TestClientForStore:
    def test_bound_client(self, db_session, store_credential):
        client = client_for_store(db_session, STORE_ID, timeout=5.0, max_retries=0)
        assert client.store_id == STORE_ID
        assert client.timeout == 5.0
        assert client.max_retries == 0

    def test_missing_credential(self, db_session):
        with pytest.raises(AuthError):
            client_for_store(db_session, "999")

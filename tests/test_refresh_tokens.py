"""
Tests for refresh token issuance, lookup, rotation and revocation.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from igrotrend_auth.credentials import CredentialStore
from igrotrend_auth.database import Database
from igrotrend_auth.errors import RefreshTokenReusedError
from igrotrend_auth.models import RefreshToken
from igrotrend_auth.refresh_tokens import RefreshTokenManager
from igrotrend_auth.utils import Validator, utcnow


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def manager(db, crypto):
    return RefreshTokenManager(db, crypto)


def token_count(db):
    return db.scalar(select(func.count()).select_from(RefreshToken))


class TestIssueAndVerify:

    def test_verify_returns_record_of_owner(self, manager, user):
        raw = manager.issue(user.id)
        record = manager.verify(raw)
        assert record is not None
        assert record.user_id == user.id

    def test_raw_token_is_not_persisted(self, manager, user, db):
        raw = manager.issue(user.id)
        record = db.scalars(select(RefreshToken)).one()
        assert record.token_hash != raw
        assert raw not in record.token_hash
        assert record.token_hash.startswith('$argon2id$')

    def test_token_has_enough_entropy(self, manager, user):
        raw = manager.issue(user.id)
        assert len(bytes.fromhex(raw)) >= 32

    def test_expiry_defaults_to_thirty_days(self, manager, user):
        record = manager.verify(manager.issue(user.id))
        assert record.expires_at - record.created_at == timedelta(days=30)

    def test_unknown_token_returns_none(self, manager, user):
        manager.issue(user.id)
        assert manager.verify('deadbeef' * 16) is None
        assert manager.verify('') is None

    def test_multiple_sessions_per_user(self, manager, user):
        first = manager.issue(user.id)
        second = manager.issue(user.id)
        assert manager.verify(first).id != manager.verify(second).id

    def test_expired_record_never_returned(self, db, crypto, user):
        long_ago = utcnow() - timedelta(days=31)
        stale = RefreshTokenManager(db, crypto, clock=lambda: long_ago)
        raw = stale.issue(user.id)

        assert RefreshTokenManager(db, crypto).verify(raw) is None


class TestRotation:

    def test_old_token_dead_new_token_alive(self, manager, user):
        old = manager.issue(user.id)
        record = manager.verify(old)

        new = manager.rotate(record.id, user.id)

        assert manager.verify(old) is None
        assert manager.verify(new).user_id == user.id

    def test_second_rotation_of_same_record_fails(self, manager, user, db):
        record = manager.verify(manager.issue(user.id))
        manager.rotate(record.id, user.id)

        with pytest.raises(RefreshTokenReusedError):
            manager.rotate(record.id, user.id)
        assert token_count(db) == 1

    def test_rotation_requires_matching_owner(self, manager, user, make_user, db):
        other = make_user('bob@example.com', 'secret2', 'bob')
        raw = manager.issue(user.id)
        record_id = manager.verify(raw).id

        with pytest.raises(RefreshTokenReusedError):
            manager.rotate(record_id, other.id)
        assert manager.verify(raw).id == record_id
        assert token_count(db) == 1

    def test_concurrent_rotation_of_same_record(self, tmp_path, settings, crypto):
        database = Database(f"sqlite:///{tmp_path / 'auth.db'}")
        database.create_all()
        try:
            setup = database.session()
            user = CredentialStore(setup, crypto, Validator(settings)).create(
                'alice@example.com', 'secret1', 'alice')
            user_id = user.id
            record_id = RefreshTokenManager(setup, crypto).verify(
                RefreshTokenManager(setup, crypto).issue(user_id)).id
            setup.close()

            barrier = threading.Barrier(2)
            outcomes = []
            lock = threading.Lock()

            def refresh():
                session = database.session()
                try:
                    barrier.wait()
                    RefreshTokenManager(session, crypto).rotate(record_id, user_id)
                    result = 'rotated'
                except RefreshTokenReusedError:
                    result = 'reused'
                finally:
                    session.close()
                with lock:
                    outcomes.append(result)

            threads = [threading.Thread(target=refresh) for _ in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert sorted(outcomes) == ['reused', 'rotated']
            check = database.session()
            assert token_count(check) == 1
            check.close()
        finally:
            database.dispose()


class TestRevocation:

    def test_revoke_is_idempotent(self, manager, user):
        raw = manager.issue(user.id)
        record = manager.verify(raw)
        assert manager.revoke(record.id) is True
        assert manager.revoke(record.id) is False
        assert manager.verify(raw) is None

    def test_revoke_token_by_raw_value(self, manager, user):
        raw = manager.issue(user.id)
        assert manager.revoke_token(raw) == user.id
        assert manager.verify(raw) is None
        assert manager.revoke_token(raw) is None

    def test_revoke_token_finds_expired_records(self, db, crypto, user):
        long_ago = utcnow() - timedelta(days=31)
        raw = RefreshTokenManager(db, crypto, clock=lambda: long_ago).issue(user.id)
        assert RefreshTokenManager(db, crypto).revoke_token(raw) == user.id
        assert token_count(db) == 0

    def test_revoke_all_for_user(self, manager, user, make_user):
        other = make_user('bob@example.com', 'secret2', 'bob')
        mine = [manager.issue(user.id) for _ in range(3)]
        theirs = manager.issue(other.id)

        assert manager.revoke_all_for_user(user.id) == 3
        assert all(manager.verify(raw) is None for raw in mine)
        assert manager.verify(theirs) is not None

    def test_purge_expired(self, db, crypto, user):
        long_ago = utcnow() - timedelta(days=31)
        RefreshTokenManager(db, crypto, clock=lambda: long_ago).issue(user.id)
        live = RefreshTokenManager(db, crypto)
        fresh = live.issue(user.id)

        assert live.purge_expired() == 1
        assert live.verify(fresh) is not None
        assert token_count(db) == 1

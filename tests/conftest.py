import pytest

from igrotrend_auth import create_app
from igrotrend_auth.app import EXTENSION_KEY
from igrotrend_auth.config import TestingConfig
from igrotrend_auth.credentials import CredentialStore
from igrotrend_auth.models import EmailStatus
from igrotrend_auth.utils import Validator


@pytest.fixture
def settings():
    return TestingConfig()


@pytest.fixture
def app(settings):
    app = create_app(settings)
    yield app
    database = app.extensions[EXTENSION_KEY].database
    database.drop_all()
    database.dispose()


@pytest.fixture
def components(app):
    return app.extensions[EXTENSION_KEY]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(components):
    session = components.database.session()
    yield session
    session.close()


@pytest.fixture
def crypto(components):
    return components.crypto


@pytest.fixture
def credentials(db, crypto, settings):
    return CredentialStore(db, crypto, Validator(settings))


@pytest.fixture
def make_user(credentials):
    def _make(email='alice@example.com', password='secret1', username='alice', verified=True):
        status = EmailStatus.VERIFIED if verified else EmailStatus.PENDING
        return credentials.create(email, password, username, email_status=status)
    return _make


@pytest.fixture
def outbox(components, monkeypatch):
    sent = []

    def fake_send(to_email, subject, body_text, body_html=None):
        sent.append({'to': to_email, 'subject': subject, 'body': body_text})

    monkeypatch.setattr(components.email, 'send', fake_send)
    return sent



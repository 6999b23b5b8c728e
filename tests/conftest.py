from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from models.boutique import Boutique
from models.demande import Demande
from models.formation import Formation
from models.plan import Plan
from models.subscription import Subscription
from models.user import User
from security import jwt as jwt_utils
from services import email as email_service
from services import paiementpro
from services.references import DEMANDE_REF, assign_reference


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.PAIEMENTPRO_SECRET = ""
    core_config.settings.PAIEMENTPRO_MERCHANT_ID = "PP-TEST"
    core_config.settings.TESTING = True
    yield


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def db(db_session_override):
    """Same session the routes see, for arranging and asserting."""
    return db_session_override


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture()
def gateway(monkeypatch):
    """PaiementPro init endpoint stub. Returns the list of payloads it received."""
    calls = []

    def _fake_post(url, json=None, timeout=None):
        calls.append(json)
        resp = Mock()
        resp.raise_for_status.return_value = None
        resp.json.return_value = {"Code": 0, "Sessionid": f"SESS{len(calls):04d}", "Description": "OK"}
        return resp

    monkeypatch.setattr(paiementpro.requests, "post", _fake_post)
    return calls


@pytest.fixture()
def client(db_session_override):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def test_user(db):
    user = User(
        first_name="Awa",
        last_name="Koné",
        email="awa@example.com",
        phone="+2250700000000",
        password_hash="not-a-real-hash",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin_user(db):
    user = User(first_name="Admin", last_name="Lawry", email="admin@example.com", password_hash="x", is_admin=True)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def auth_headers(test_user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(test_user.id))}"}


@pytest.fixture
def admin_headers(admin_user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(admin_user.id))}"}


@pytest.fixture
def demande(db, test_user):
    item = Demande(
        type_slug="creation-entreprise",
        variant_key="sarl",
        created_by=test_user.id,
        data={"amount": 5000, "company": "Acme"},
    )
    assign_reference(db, item, "ref", *DEMANDE_REF)
    db.commit()
    return item


@pytest.fixture
def formation(db):
    item = Formation(code="FORM001", title="Droit des affaires", price_cfa=75000, level="débutant", modules=["OHADA"])
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def plan(db):
    item = Plan(code="PLAN001", name="Pro", monthly_price_cfa=10000, yearly_price_cfa=100000)
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def subscription(db, test_user, plan):
    item = Subscription(user_id=test_user.id, plan_id=plan.id, period="monthly")
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def file_product(db):
    item = Boutique(
        code="PROD001",
        name="Modèle de statuts",
        type="file",
        price_cfa=1500,
        files=["boutique/statuts-sarl.docx", "boutique/guide.pdf"],
    )
    db.add(item)
    db.commit()
    return item

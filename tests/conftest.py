from collections.abc import Generator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import ekklesia_api.models  # noqa: F401
from ekklesia_api.core.config import get_settings
from ekklesia_api.db.session import get_db
from ekklesia_api.main import app
from ekklesia_api.models.base import Base
from ekklesia_api.services import bootstrap_system_catalog


def _generate_rsa_pem() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


@pytest.fixture(scope="session")
def rsa_key_pair() -> tuple[str, str]:
    return _generate_rsa_pem()


@pytest.fixture(scope="session")
def foreign_private_key() -> str:
    """与服务端公钥不匹配的私钥，用于构造签名错误的令牌。"""
    return _generate_rsa_pem()[0]


@pytest.fixture(autouse=True)
def auth_settings(monkeypatch, rsa_key_pair):
    private_pem, public_pem = rsa_key_pair
    monkeypatch.setenv("EKK_AUTH_PRIVATE_KEY", private_pem)
    monkeypatch.setenv("EKK_AUTH_PUBLIC_KEY", public_pem)
    # 测试中降低哈希迭代次数以加快执行。
    monkeypatch.setenv("EKK_AUTH_PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.delenv("EKK_REDIS_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    db = local_session()
    bootstrap_system_catalog(db)
    db.commit()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def http_session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    with local_session() as db:
        bootstrap_system_catalog(db)
        db.commit()
    try:
        yield local_session
    finally:
        engine.dispose()


@pytest.fixture
def client(http_session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        db = http_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as api_client:
            yield api_client
    finally:
        app.dependency_overrides.pop(get_db, None)

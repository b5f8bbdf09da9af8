import pytest

from config import Settings
from credentials import (
    ADMIN,
    USER,
    HashedCredentialVerifier,
    PlaintextCredentialVerifier,
    create_admin,
    register_user,
    seed_admin,
    set_admin_password,
    verifier_for,
)
from database import ensure_indexes
from errors import DuplicateEmail, Rejected, ValidationError
from schemas import UserCreate


async def register(db, username="a", email="A@X.com", password="p"):
    return await register_user(db, UserCreate(username=username, email=email, password=password))


def test_verifier_for_selects_policy_by_kind():
    assert isinstance(verifier_for(USER), PlaintextCredentialVerifier)
    assert isinstance(verifier_for(ADMIN), HashedCredentialVerifier)
    with pytest.raises(ValueError):
        verifier_for("robot")


@pytest.mark.asyncio
async def test_ensure_indexes_declares_unique_keys(fake_db):
    fake_db["user"].unique.clear()
    fake_db["admin"].unique.clear()
    await ensure_indexes(fake_db)
    assert fake_db["user"].unique == {"email"}
    assert fake_db["admin"].unique == {"username"}


@pytest.mark.asyncio
async def test_register_user_lowercases_email_and_keeps_password(fake_db):
    created = await register(fake_db)
    assert created["email"] == "a@x.com"
    assert created["password"] == "p"
    assert fake_db["user"].docs[0]["email"] == "a@x.com"


@pytest.mark.asyncio
async def test_register_user_requires_every_field(fake_db):
    with pytest.raises(ValidationError):
        await register_user(fake_db, UserCreate(username="a", email="a@x.com"))
    with pytest.raises(ValidationError):
        await register_user(fake_db, UserCreate(username=" ", email="a@x.com", password="p"))
    assert fake_db["user"].docs == []


@pytest.mark.asyncio
async def test_register_user_rejects_duplicate_email_in_any_case(fake_db):
    await register(fake_db, email="a@x.com")
    with pytest.raises(DuplicateEmail):
        await register(fake_db, username="b", email="A@x.com")
    assert len(fake_db["user"].docs) == 1


@pytest.mark.asyncio
async def test_user_verification_exact_pair(fake_db):
    created = await register(fake_db, email="reader@mail.com", password="secret")
    verified = await verifier_for(USER).verify(fake_db, "reader@mail.com", "secret")
    assert verified.identifier == created["id"]
    assert verified.kind == USER


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password",
    [
        ("reader@mail.com", "secreT"),
        ("reader@mail.com", "secre"),
        ("reades@mail.com", "secret"),
        ("reader@mail.co", "secret"),
        ("nobody@mail.com", "secret"),
        ("", ""),
    ],
)
async def test_user_verification_rejects_mutations(fake_db, email, password):
    await register(fake_db, email="reader@mail.com", password="secret")
    with pytest.raises(Rejected) as excinfo:
        await verifier_for(USER).verify(fake_db, email, password)
    assert excinfo.value.message == "Invalid email or password"


@pytest.mark.asyncio
async def test_create_admin_stores_only_hash(fake_db):
    await create_admin(fake_db, "  root ", "s3cret")
    doc = fake_db["admin"].docs[0]
    assert doc["username"] == "root"
    assert doc["password_hash"] != "s3cret"
    assert "password" not in doc
    assert doc["token"] is None


@pytest.mark.asyncio
async def test_admin_verification(fake_db):
    created = await create_admin(fake_db, "root", "s3cret")
    verified = await verifier_for(ADMIN).verify(fake_db, "root", "s3cret")
    assert verified.identifier == created["id"]
    assert verified.username == "root"

    for username, password in (("root", "s3creT"), ("rooT", "s3cret"), ("ghost", "s3cret")):
        with pytest.raises(Rejected) as excinfo:
            await verifier_for(ADMIN).verify(fake_db, username, password)
        assert excinfo.value.message == "Invalid credentials"


@pytest.mark.asyncio
async def test_set_admin_password_rehashes(fake_db):
    await create_admin(fake_db, "root", "old")
    await set_admin_password(fake_db, "root", "new")
    await verifier_for(ADMIN).verify(fake_db, "root", "new")
    with pytest.raises(Rejected):
        await verifier_for(ADMIN).verify(fake_db, "root", "old")


@pytest.mark.asyncio
async def test_seed_admin(fake_db):
    await seed_admin(fake_db, Settings())
    assert fake_db["admin"].docs == []

    await seed_admin(fake_db, Settings(admin_username="root", admin_password="first"))
    await seed_admin(fake_db, Settings(admin_username="root", admin_password="first"))
    assert len(fake_db["admin"].docs) == 1

    await seed_admin(fake_db, Settings(admin_username="root", admin_password="second"))
    await verifier_for(ADMIN).verify(fake_db, "root", "second")

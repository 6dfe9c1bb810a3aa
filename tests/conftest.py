from __future__ import annotations

import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from jobchat.auth import Identity
from jobchat.database import Base, build_engine, build_session_factory
from jobchat.main import create_app
from jobchat.models import Role, User

SECRET = "test-secret"
ALGORITHM = "HS256"

RECRUITER_ID = 1
CANDIDATE_ID = 2
OUTSIDER_ID = 3
OTHER_RECRUITER_ID = 4

USERS = [
    (RECRUITER_ID, "rita@example.com", "Rita", "Recruiter", Role.RECRUITER),
    (CANDIDATE_ID, "carl@example.com", "Carl", "Candidate", Role.CANDIDATE),
    (OUTSIDER_ID, "olga@example.com", "Olga", "Outsider", Role.CANDIDATE),
    (OTHER_RECRUITER_ID, "rob@example.com", "Rob", "Other", Role.RECRUITER),
]


def make_token(user_id: int, role: str, secret: str = SECRET, **claims) -> str:
    return jwt.encode({"user_id": user_id, "role": role, **claims}, secret, algorithm=ALGORITHM)


def expired_token(user_id: int, role: str) -> str:
    return make_token(user_id, role, exp=int(time.time()) - 60)


def auth_headers(user_id: int, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "jobchat.sqlite3"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all(
            User(id=user_id, email=email, first_name=first, last_name=last, role=role)
            for user_id, email, first, last, role in USERS
        )
        session.commit()
    engine.dispose()
    return path


@pytest.fixture
async def session_factory(db_path: Path):
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}")
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def recruiter() -> Identity:
    return Identity(user_id=RECRUITER_ID, role=Role.RECRUITER)


@pytest.fixture
def candidate() -> Identity:
    return Identity(user_id=CANDIDATE_ID, role=Role.CANDIDATE)


@pytest.fixture
def outsider() -> Identity:
    return Identity(user_id=OUTSIDER_ID, role=Role.CANDIDATE)


@pytest.fixture
def client(db_path: Path):
    app = create_app(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        secret_key=SECRET,
        algorithm=ALGORITHM,
    )
    with TestClient(app) as test_client:
        yield test_client

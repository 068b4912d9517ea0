"""Shared test fixtures.

Tests run against in-memory SQLite. The Postgres trigger is replaced by an
equivalent SQLite trigger and the stored procedures by ``FakeProcedures``,
patched over ``academy.db.procedures.call``.
"""

from __future__ import annotations

import os

os.environ["ACADEMY_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ACADEMY_REDIS_URL"] = ""
os.environ["ACADEMY_PROGRESS_SETTLE_DELAY_MS"] = "0"
os.environ["ACADEMY_PROGRESS_READ_BACKOFF_MS"] = "0"
os.environ["ACADEMY_LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select, text, update  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from academy.auth.jwt import create_access_token, reset_keys  # noqa: E402
from academy.config import get_settings  # noqa: E402
from academy.database import close_db, get_engine, get_session, init_db  # noqa: E402
from academy.db import procedures  # noqa: E402
from academy.db.base import Base  # noqa: E402
from academy.db.models import Course, CoursePrerequisite, Lesson, User, UserProgress  # noqa: E402
from academy.gamification.levels import calculate_level  # noqa: E402

USER_ID = "user-0001"
USER_ADDRESS = "0x52908400098527886e0f7030069857d2e4169ee7"
COURSE_ID = "course_001"
NEXT_COURSE_ID = "course_002"
LESSON_TYPES = ("text", "interactive", "quiz", "practical", "text")
LESSON_IDS = tuple(f"lesson_{n:03d}" for n in range(1, len(LESSON_TYPES) + 1))

# SQLite stand-in for the update_course_progress() trigger of the initial migration
COURSE_PROGRESS_TRIGGER = """
CREATE TRIGGER trigger_update_course_progress
AFTER INSERT ON lesson_completions
FOR EACH ROW
BEGIN
    UPDATE users
    SET courses_completed = courses_completed + 1
    WHERE id = NEW.user_id
      AND EXISTS (
          SELECT 1 FROM user_progress up
          WHERE up.user_id = NEW.user_id
            AND up.course_id = NEW.course_id
            AND up.completed_at IS NULL
            AND (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id) > 0
            AND (SELECT COUNT(*) FROM lesson_completions
                 WHERE user_id = NEW.user_id AND course_id = NEW.course_id)
                >= (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id)
      );

    UPDATE user_progress
    SET lessons_completed = (
            SELECT COUNT(*) FROM lesson_completions
            WHERE user_id = NEW.user_id AND course_id = NEW.course_id
        ),
        progress_percentage = CASE
            WHEN (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id) > 0
                THEN (SELECT COUNT(*) FROM lesson_completions
                      WHERE user_id = NEW.user_id AND course_id = NEW.course_id) * 100.0
                     / (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id)
            ELSE 0
        END,
        completed_at = CASE
            WHEN (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id) > 0
                 AND (SELECT COUNT(*) FROM lesson_completions
                      WHERE user_id = NEW.user_id AND course_id = NEW.course_id)
                     >= (SELECT COUNT(*) FROM lessons WHERE course_id = NEW.course_id)
                THEN COALESCE(completed_at, CURRENT_TIMESTAMP)
            ELSE completed_at
        END,
        updated_at = CURRENT_TIMESTAMP
    WHERE user_id = NEW.user_id AND course_id = NEW.course_id;
END
"""


class FakeProcedures:
    """In-process stand-in for the stored procedures.

    ``fail`` raises before anything is written, ``commit_then_fail`` writes
    and commits first (the ambiguous failure), ``missing`` reports the
    function as not installed.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail: set[str] = set()
        self.commit_then_fail: set[str] = set()
        self.missing: set[str] = set()

    def count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)

    async def call(self, db: AsyncSession, name: str, **params: Any) -> Any:
        self.calls.append((name, params))
        if name in self.missing:
            raise procedures.ProcedureError(name, f"function {name}(character varying) does not exist")
        if name in self.fail:
            raise procedures.ProcedureError(name, "connection reset by peer")

        if name == procedures.AWARD_XP:
            value = await self._award_xp(db, params["p_user_id"], params["p_xp_amount"])
        elif name == procedures.INCREMENT_LESSONS_COMPLETED:
            await db.execute(
                update(User)
                .where(User.id == params["p_user_id"])
                .values(lessons_completed=User.lessons_completed + 1)
                .execution_options(synchronize_session=False)
            )
            value = None
        elif name == procedures.INCREMENT_ENROLLMENT_COUNT:
            await db.execute(
                update(Course)
                .where(Course.id == params["course_id_param"])
                .values(enrollment_count=Course.enrollment_count + 1)
                .execution_options(synchronize_session=False)
            )
            value = None
        else:
            raise procedures.ProcedureError(name, "unknown procedure")
        await db.commit()

        if name in self.commit_then_fail:
            raise procedures.ProcedureError(name, "NetworkError when attempting to fetch resource")
        return value

    async def _award_xp(self, db: AsyncSession, user_id: str, amount: int) -> int:
        result = await db.execute(select(User.total_xp).where(User.id == user_id))
        new_total = result.scalar_one() + amount
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_xp=new_total, current_level=calculate_level(new_total))
            .execution_options(synchronize_session=False)
        )
        return new_total


@pytest.fixture(scope="session", autouse=True)
def jwt_keys(tmp_path_factory: pytest.TempPathFactory) -> None:
    """Generate an RSA key pair for token signing."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    keys_dir = tmp_path_factory.mktemp("keys")
    private_path = keys_dir / "jwt_private.pem"
    public_path = keys_dir / "jwt_public.pem"
    private_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    os.environ["ACADEMY_JWT_PRIVATE_KEY_PATH"] = str(private_path)
    os.environ["ACADEMY_JWT_PUBLIC_KEY_PATH"] = str(public_path)
    get_settings.cache_clear()
    reset_keys()


@pytest.fixture(autouse=True)
def fake_procedures(monkeypatch: pytest.MonkeyPatch) -> FakeProcedures:
    """Route every stored procedure call through FakeProcedures."""
    fake = FakeProcedures()
    monkeypatch.setattr(procedures, "call", fake.call)
    return fake


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh in-memory schema, shared by the app and the test sessions."""
    await init_db(
        get_settings().database_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(COURSE_PROGRESS_TRIGGER))
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test assertions."""
    sessions = get_session()
    session = await sessions.__anext__()
    yield session
    await sessions.aclose()


async def seed_catalog(session: AsyncSession) -> None:
    """A learner, a five-lesson course and a follow-up course that requires it."""
    session.add(User(id=USER_ID, evm_address=USER_ADDRESS, username="satoshi_learner"))
    session.add_all(
        [
            Course(
                id=COURSE_ID,
                title="Hedera Fundamentals",
                description="Accounts, tokens and consensus on Hedera",
                thumbnail_emoji="\U0001f4d8",
                track="explorer",
                category="blockchain",
                difficulty="beginner",
                estimated_hours=2.5,
                total_lessons=len(LESSON_IDS),
                is_featured=True,
            ),
            Course(
                id=NEXT_COURSE_ID,
                title="Smart Contracts on Hedera",
                description="Write and deploy Solidity contracts",
                track="developer",
                category="smart-contracts",
                difficulty="intermediate",
                estimated_hours=4.0,
                total_lessons=1,
            ),
        ]
    )
    await session.flush()
    session.add_all(
        [
            Lesson(
                id=lesson_id,
                course_id=COURSE_ID,
                title=f"Lesson {n}",
                lesson_type=lesson_type,
                content={"sections": []},
                sequence_number=n,
            )
            for n, (lesson_id, lesson_type) in enumerate(zip(LESSON_IDS, LESSON_TYPES), start=1)
        ]
    )
    session.add(
        Lesson(
            id="lesson_101",
            course_id=NEXT_COURSE_ID,
            title="Your first contract",
            lesson_type="practical",
            content={},
            sequence_number=1,
        )
    )
    session.add(CoursePrerequisite(course_id=NEXT_COURSE_ID, prerequisite_course_id=COURSE_ID))
    await session.commit()


async def enroll(session: AsyncSession, user_id: str = USER_ID, course_id: str = COURSE_ID) -> None:
    total = len(LESSON_IDS) if course_id == COURSE_ID else 1
    session.add(
        UserProgress(
            user_id=user_id,
            course_id=course_id,
            enrollment_date=datetime.now(timezone.utc),
            total_lessons=total,
        )
    )
    await session.commit()


async def user_counters(session: AsyncSession, user_id: str = USER_ID) -> dict[str, int]:
    """Fresh read of the gamification counters, bypassing the identity map."""
    result = await session.execute(
        select(
            User.total_xp,
            User.current_level,
            User.lessons_completed,
            User.courses_completed,
            User.badges_earned,
        ).where(User.id == user_id)
    )
    return dict(result.one()._mapping)


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> AsyncSession:
    """Session over the seeded catalog with no enrollment yet."""
    await seed_catalog(db_session)
    return db_session


@pytest_asyncio.fixture
async def enrolled(catalog: AsyncSession) -> AsyncSession:
    """Session over the seeded catalog with the learner enrolled in the first course."""
    await enroll(catalog)
    return catalog


@pytest_asyncio.fixture
async def client(db: None) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client over the in-memory database."""
    from academy.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def access_token() -> str:
    return create_access_token(USER_ID, USER_ADDRESS)


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, catalog: AsyncSession, access_token: str) -> AsyncClient:
    """Client authenticated as the seeded learner."""
    client.headers["Authorization"] = f"Bearer {access_token}"
    return client

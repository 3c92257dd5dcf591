"""
ModelRest — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the test suite.
How:   Every test gets its own SQLite file (aiosqlite) under ``tmp_path`` with
       the sample schema created and a small data set inserted, and an HTTPX
       AsyncClient talking to a freshly generated app over ASGITransport.

Fixture Hierarchy (all function-scoped):
    engine ──► session_factory ──► seeded
                      │
                      └──► generator ──► app ──► client (depends on seeded)

Seed data:
    Person 1 (age 0)  ◄─ parent ─ Person 2 (age 10) ◄─ parent ─ Person 3 (age 20)
    pets:   Person n owns Animal 2n-1 and 2n   (names P0..P5)
    movies: Person n acts in Movie 2n-1 and 2n (names M0..M5)
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

# Override settings for testing BEFORE any app imports
os.environ["MODELREST_LOG_LEVEL"] = "WARNING"

from modelrest.database import create_session_factory  # noqa: E402
from modelrest.generator import RestApiGenerator  # noqa: E402
from modelrest.main import create_app  # noqa: E402

from tests.sample_models import Animal, Base, Movie, Person, person_movie  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine(tmp_path):
    """On-disk SQLite database with the sample schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'modelrest_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Inserts three persons with two pets and two movies each."""
    async with session_factory() as session, session.begin():
        for p in range(3):
            session.add(
                Person(
                    id=p + 1,
                    first_name=f"F{p}",
                    last_name=f"L{2 - p}",
                    age=p * 10,
                    pid=p if p else None,
                )
            )
        await session.flush()
        for p in range(3):
            for a in range(2):
                animal_id = p * 2 + a + 1
                session.add(Animal(id=animal_id, name=f"P{animal_id - 1}", owner_id=p + 1))
                session.add(Movie(id=animal_id, name=f"M{animal_id - 1}"))
        await session.flush()
        await session.execute(
            insert(person_movie),
            [{"actor_id": p + 1, "movie_id": p * 2 + m + 1} for p in range(3) for m in range(2)],
        )
    return session_factory


# ══════════════════════════════════════════════════════════════════════════
# Application Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def generator(session_factory):
    return (
        RestApiGenerator(session_factory)
        .add_model(Person)
        .add_model(Animal)
        .add_model(Movie)
    )


@pytest.fixture
def app(generator, engine):
    return create_app(generator, engine=engine)


@pytest_asyncio.fixture
async def client(app, seeded) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient routed directly to the generated app.

    raise_app_exceptions=False: an error escaping the middleware chain is
    answered with a 500 instead of propagating into the test.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

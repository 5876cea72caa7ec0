"""Pytest fixtures shared by the unit and API tests.

The election core runs on the in-memory store, a frozen clock and a
fakeredis-backed rate limiter, so no external service is needed.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Dict

import fakeredis
import httpx
import pytest

from services.shared import Candidate, Fingerprint
from services.voting_api.config import Settings
from services.voting_api.duplicate_guard import CompositeStrategy
from services.voting_api.identity import IdentityValidator
from services.voting_api.main import create_app
from services.voting_api.redis_client import VoteRateLimiter
from services.voting_api.roster import StaticRoster
from services.voting_api.service import ElectionService
from services.voting_api.store import InMemoryStore

DOMAIN = "inst.edu"
POSITIONS = ["President", "Vice President", "Senate President", "Treasurer"]


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory election on the test domain."""
    return Settings(
        INSTITUTION_DOMAIN=DOMAIN,
        STORE_BACKEND="memory",
        VOTE_RATE_LIMIT=0,
        SESSION_TTL_MINUTES=120,
        DETECTION_STRATEGY="composite",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def roster() -> StaticRoster:
    """Two candidates for each of the four positions."""
    return StaticRoster([
        Candidate("c1", "Ada Bello", "President"),
        Candidate("c2", "Tunde Lawal", "President"),
        Candidate("c3", "Ngozi Eze", "Vice President"),
        Candidate("c4", "Musa Idris", "Vice President"),
        Candidate("c5", "Kemi Ade", "Senate President"),
        Candidate("c6", "Yusuf Sani", "Senate President"),
        Candidate("c7", "Chioma Obi", "Treasurer"),
        Candidate("c8", "Bayo Ojo", "Treasurer"),
    ])


@pytest.fixture
def validator(settings: Settings) -> IdentityValidator:
    return IdentityValidator.from_settings(settings)


@pytest.fixture
def redis_client() -> fakeredis.FakeAsyncRedis:
    """Isolated fake Redis server per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def rate_limiter(redis_client) -> VoteRateLimiter:
    return VoteRateLimiter(redis_client, limit=200, window_seconds=60)


@pytest.fixture
def service(store, roster, validator, clock, rate_limiter) -> ElectionService:
    """Election service wired with the composite strategy."""
    return ElectionService(
        store=store,
        roster=roster,
        validator=validator,
        strategy=CompositeStrategy(),
        session_ttl=timedelta(minutes=120),
        clock=clock,
        rate_limiter=rate_limiter,
        max_retries=5,
    )


@pytest.fixture
def student() -> Callable[..., Dict[str, str]]:
    """Factory for sign-in credentials of student ``n``.

    Returns keyword arguments accepted by ``IdentityValidator.validate`` and
    ``ElectionService.sign_in``.
    """
    def make(n: int, year: str = "22", dept: str = "03sen", personal: str = None) -> Dict[str, str]:
        return {
            "institutional_email": f"{year}{dept}{n:03d}@{DOMAIN}",
            "personal_email": personal or f"student{n}@gmail.com",
            "matric_number": f"{year}/{dept}{n:03d}",
            "full_name": f"Student Number{n}",
        }
    return make


@pytest.fixture
def device() -> Callable[..., Fingerprint]:
    """Factory for the fingerprint of device ``n``, by default on its own network."""
    def make(n: int, network: str = None) -> Fingerprint:
        return Fingerprint(
            device_id=f"device-{n}",
            network=network or f"10.0.0.{n}",
            browser_signature=f"browser-{n}",
        )
    return make


@pytest.fixture
def vote_all(service: ElectionService):
    """Cast one ballot per position for a signed-in voter."""
    async def cast(voter_id: str, choices=("c1", "c3", "c5", "c7")):
        ballots = []
        for candidate_id, position in zip(choices, POSITIONS):
            ballots.append(await service.ballots.cast(voter_id, candidate_id, position))
        return ballots
    return cast


@pytest.fixture
def app(service: ElectionService):
    return create_app(service=service)


@pytest.fixture
async def api_client_factory(app) -> AsyncGenerator[Callable[[str], httpx.AsyncClient], None]:
    """Build HTTP clients that connect from a given address.

    Each student is expected to use its own address; the composite strategy
    binds the network a student signs in from.
    """
    clients = []

    def make(address: str = "10.0.0.1") -> httpx.AsyncClient:
        transport = httpx.ASGITransport(app=app, client=(address, 50000))
        client = httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0)
        clients.append(client)
        return client

    yield make

    for client in clients:
        await client.aclose()

"""Shared fixtures: file-backed sqlite database, fake provider, fake Omise API."""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.deps import get_services
from app.core.config import settings
from app.db.base import Base
from app.db.models.ai_model import AIModel
from app.db.models.credit import LedgerKind
from app.db.models.generation import Generation, GenerationStatus
from app.main import app
from app.services.container import build_services, close_services
from app.services.kie_service import TaskState, TaskStatus

ADMIN_KEY = "test-admin-key"


class FakeClock:
    """Monotonic clock the tests move by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-memory stand-in for KieService"""

    def __init__(self):
        self.submitted: List[dict] = []
        self.polls: List[str] = []
        self.submit_error: Optional[Exception] = None
        self._statuses: Dict[str, list] = {}
        self._counter = 0

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass

    def queue(self, task_id: str, *results) -> None:
        """Results returned by successive polls; the last one repeats"""
        self._statuses[task_id] = list(results)

    async def submit(self, model_id: str, prompt: str, params=None) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self._counter += 1
        task_id = f"task_{self._counter}"
        self.submitted.append({"task_id": task_id, "model_id": model_id, "prompt": prompt, "params": params})
        return task_id

    async def poll(self, task_id: str, model_id: str) -> TaskStatus:
        self.polls.append(task_id)
        results = self._statuses.get(task_id)
        if not results:
            return running(task_id)
        result = results.pop(0) if len(results) > 1 else results[0]
        if isinstance(result, Exception):
            raise result
        return result


def running(task_id: str) -> TaskStatus:
    return TaskStatus(task_id=task_id, state=TaskState.RUNNING)


def succeeded(task_id: str, *urls: str) -> TaskStatus:
    return TaskStatus(task_id=task_id, state=TaskState.SUCCESS, result_urls=list(urls))


def failed(task_id: str, error: str) -> TaskStatus:
    return TaskStatus(task_id=task_id, state=TaskState.FAILURE, error=error)


class FakeThumbnailer:
    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    async def generate(self, video_url: str, user_id: str, generation_id: str) -> str:
        self.calls.append((video_url, user_id, generation_id))
        if self.error is not None:
            raise self.error
        return f"/thumbnails/{user_id}/{generation_id}.jpg"


class FakeOmise:
    """Answers /charges requests like the Omise API"""

    def __init__(self):
        self.charges: Dict[str, dict] = {}
        self.requests: List[httpx.Request] = []

    def add_charge(
        self,
        charge_id: str,
        user_id: Optional[str] = "user_1",
        credits: int = 500,
        paid: bool = True,
        status: str = "successful",
        package_id: str = "package_500",
    ) -> dict:
        metadata = {"packageId": package_id, "credits": str(credits)}
        if user_id:
            metadata["userId"] = user_id
        charge = {
            "object": "charge",
            "id": charge_id,
            "amount": credits * 100,
            "currency": "thb",
            "paid": paid,
            "status": status,
            "metadata": metadata,
        }
        self.charges[charge_id] = charge
        return charge

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/charges":
            body = json.loads(request.content)
            charge_id = f"chrg_test_{len(self.charges) + 1}"
            is_card = "card" in body
            charge = {
                "object": "charge",
                "id": charge_id,
                "amount": body["amount"],
                "currency": body["currency"],
                "paid": is_card,
                "status": "successful" if is_card else "pending",
                "metadata": body["metadata"],
                "authorize_uri": None,
            }
            if not is_card:
                charge["source"] = {
                    "type": "promptpay",
                    "scannable_code": {"image": {"download_uri": "https://api.omise.co/qr/chrg.png"}},
                }
            self.charges[charge_id] = charge
            return httpx.Response(200, json=charge)
        if request.method == "GET" and path.startswith("/charges/"):
            charge = self.charges.get(path.rsplit("/", 1)[-1])
            if charge is not None:
                return httpx.Response(200, json=charge)
        return httpx.Response(404, json={"object": "error", "code": "not_found", "message": "charge was not found"})


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studio.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def thumbnailer():
    return FakeThumbnailer()


@pytest.fixture
def omise():
    return FakeOmise()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def services(session_factory, provider, thumbnailer, omise, clock):
    services = build_services(
        session_factory,
        provider=provider,
        thumbnailer=thumbnailer,
        payment_client=httpx.AsyncClient(transport=httpx.MockTransport(omise.handler)),
        interval_seconds=0.01,
        max_lifetime_seconds=2700.0,
        clock=clock,
    )
    services.payments.secret_key = "skey_test"
    services.payments.public_key = "pkey_test"
    yield services
    await close_services(services)


@pytest.fixture
def add_model(session_factory):
    async def _add(model_id: str = "veo3_fast", type: str = "video", cost=40, is_active: bool = True) -> AIModel:
        model = AIModel(
            id=model_id.replace("/", "-"),
            model_id=model_id,
            name=f"Model {model_id}",
            type=type,
            cost_per_generation=Decimal(str(cost)),
            is_active=is_active,
        )
        async with session_factory() as db:
            db.add(model)
            await db.commit()
        return model
    return _add


@pytest.fixture
def fund(services):
    async def _fund(user_id: str, amount):
        return await services.ledger.add_credits(user_id, amount, LedgerKind.TOPUP, "Test top-up")
    return _fund


@pytest.fixture
def add_generation(session_factory):
    """Insert a generation row directly, bypassing submission"""
    async def _add(
        job_id: str,
        user_id: str = "user_1",
        status: str = GenerationStatus.PROCESSING,
        external_task_id: Optional[str] = None,
        model_id: str = "veo3_fast",
        type: str = "video",
        credits_charged=40,
        refunded: bool = False,
        created_at: Optional[datetime] = None,
    ) -> Generation:
        job = Generation(
            id=job_id,
            user_id=user_id,
            model_id=model_id,
            type=type,
            prompt="a cat surfing",
            parameters={},
            external_task_id=external_task_id,
            status=status,
            credits_charged=Decimal(str(credits_charged)),
            refunded=refunded,
            is_hidden=False,
        )
        if created_at is not None:
            job.created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)
        async with session_factory() as db:
            db.add(job)
            await db.commit()
        return job
    return _add


@pytest.fixture
async def client(services, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    app.dependency_overrides[get_services] = lambda: services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll predicate (sync or async) until it is truthy"""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import InsufficientBalance, NotFoundError, ProviderError, ProviderSubmitFailure
from app.db.models.credit import CreditTransaction, LedgerKind
from app.db.models.generation import Generation, GenerationStatus
from app.schemas.completion import CompletionSignal

from conftest import succeeded


async def _count(session_factory, model, *criteria):
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model).where(*criteria))


@pytest.mark.asyncio
async def test_submit_charges_and_starts_polling(services, provider, add_model, fund):
    await add_model("veo3_fast", cost=40)
    await fund("user_1", 100)

    job = await services.jobs.submit_job("user_1", "veo3_fast", "a cat surfing", {"aspectRatio": "9:16"})

    assert job.id.startswith("gen_")
    assert job.status == GenerationStatus.PROCESSING
    assert job.external_task_id == "task_1"
    assert job.credits_charged == Decimal("40")
    assert services.poller.is_polling(job.id)
    assert provider.submitted == [
        {"task_id": "task_1", "model_id": "veo3_fast", "prompt": "a cat surfing", "params": {"aspectRatio": "9:16"}}
    ]
    assert await services.ledger.get_balance("user_1") == Decimal("60")

    entries = await services.ledger.list_transactions("user_1")
    [entry] = [e for e in entries if e.kind == LedgerKind.DEDUCTION]
    assert entry.related_generation_id == job.id


@pytest.mark.asyncio
async def test_submit_resolves_model_by_catalogue_id(services, add_model, fund):
    await add_model("kling/v2-1-pro", cost=60)
    await fund("user_1", 100)

    job = await services.jobs.submit_job("user_1", "kling-v2-1-pro", "a dog")

    assert job.model_id == "kling/v2-1-pro"


@pytest.mark.asyncio
async def test_submit_with_insufficient_balance_writes_nothing(services, provider, session_factory, add_model, fund):
    await add_model("veo3_fast", cost=40)
    await fund("user_1", 10)

    with pytest.raises(InsufficientBalance):
        await services.jobs.submit_job("user_1", "veo3_fast", "a cat")

    assert provider.submitted == []
    assert await _count(session_factory, Generation) == 0
    assert await services.ledger.get_balance("user_1") == Decimal("10")


@pytest.mark.asyncio
async def test_submit_unknown_or_inactive_model(services, add_model, fund):
    await add_model("veo3", cost=50, is_active=False)
    await fund("user_1", 100)

    with pytest.raises(NotFoundError):
        await services.jobs.submit_job("user_1", "does-not-exist", "a cat")
    with pytest.raises(NotFoundError):
        await services.jobs.submit_job("user_1", "veo3", "a cat")


@pytest.mark.asyncio
async def test_submit_failure_refunds_without_polling(services, provider, session_factory, add_model, fund):
    await add_model("veo3_fast", cost=40)
    await fund("user_1", 100)
    provider.submit_error = ProviderError("Failed to generate content", code=400)

    with pytest.raises(ProviderSubmitFailure) as exc_info:
        await services.jobs.submit_job("user_1", "veo3_fast", "a cat")

    job = await services.store.get(exc_info.value.job_id)
    assert job.status == GenerationStatus.FAILED
    assert job.error_message == "Failed to generate content"
    assert job.refunded is True
    assert job.external_task_id is None
    assert services.poller.active_count == 0
    assert await services.ledger.get_balance("user_1") == Decimal("100")
    assert await _count(
        session_factory,
        CreditTransaction,
        CreditTransaction.kind == LedgerKind.REFUND,
        CreditTransaction.related_generation_id == job.id,
    ) == 1


@pytest.mark.asyncio
async def test_submit_failure_surfaces_even_when_refund_raises(services, provider, add_model, fund, monkeypatch):
    await add_model("veo3_fast", cost=40)
    await fund("user_1", 100)
    provider.submit_error = ProviderError("Failed to generate content", code=400)

    async def _broken_refund(job_id):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(services.ledger, "refund", _broken_refund)

    with pytest.raises(ProviderSubmitFailure) as exc_info:
        await services.jobs.submit_job("user_1", "veo3_fast", "a cat")

    assert exc_info.value.refunded is False
    job = await services.store.get(exc_info.value.job_id)
    assert job.status == GenerationStatus.FAILED
    assert job.refunded is False
    assert services.poller.active_count == 0

    monkeypatch.undo()
    assert (await services.reconciler.apply_completion(
        job.id, CompletionSignal.failure("Failed to generate content", source="webhook")
    )).job.refunded is True
    assert await services.ledger.get_balance("user_1") == Decimal("100")


@pytest.mark.asyncio
async def test_hide_and_unhide(services, add_generation):
    await add_generation("gen_1", status=GenerationStatus.COMPLETED)
    await add_generation("gen_2", status=GenerationStatus.COMPLETED)

    await services.jobs.set_hidden("gen_1", "user_1", True)

    assert [j.id for j in await services.jobs.list_jobs("user_1")] == ["gen_2"]
    assert {j.id for j in await services.jobs.list_jobs("user_1", include_hidden=True)} == {"gen_1", "gen_2"}

    job = await services.jobs.set_hidden("gen_1", "user_1", False)
    assert job.is_hidden is False


@pytest.mark.asyncio
async def test_hide_requires_ownership(services, add_generation):
    await add_generation("gen_1", user_id="user_1")

    with pytest.raises(NotFoundError):
        await services.jobs.set_hidden("gen_1", "user_2", True)


@pytest.mark.asyncio
async def test_recover_on_startup(services, provider, fund, add_generation):
    await fund("user_1", 20)
    now = datetime.now(timezone.utc)
    await add_generation("gen_live", external_task_id="task_live", created_at=now - timedelta(minutes=5))
    await add_generation("gen_expired", external_task_id="task_old", created_at=now - timedelta(minutes=50))
    await add_generation("gen_stuck", status=GenerationStatus.PENDING, created_at=now - timedelta(hours=2))
    await add_generation("gen_fresh", status=GenerationStatus.PENDING, created_at=now)
    await add_generation("gen_failed", status=GenerationStatus.FAILED, credits_charged=40)
    await add_generation("gen_done", status=GenerationStatus.FAILED, credits_charged=40, refunded=True)
    provider.queue("task_live", succeeded("task_live", "https://cdn/v.mp4"))
    # first ticks land after the sweep has finished
    services.poller.interval_seconds = 0.2

    counts = await services.jobs.recover_on_startup()

    assert counts == {"resumed": 2, "abandoned": 1, "refunded": 2}
    for job_id in ("gen_live", "gen_expired"):
        await services.poller.wait(job_id)

    assert (await services.store.get("gen_live")).status == GenerationStatus.COMPLETED
    expired = await services.store.get("gen_expired")
    assert expired.status == GenerationStatus.FAILED
    assert expired.error_message.startswith("Generation timeout after 45 minutes")
    assert expired.refunded is True
    assert "task_old" not in provider.polls

    stuck = await services.store.get("gen_stuck")
    assert stuck.status == GenerationStatus.FAILED
    assert stuck.refunded is True
    assert (await services.store.get("gen_fresh")).status == GenerationStatus.PENDING
    assert (await services.store.get("gen_failed")).refunded is True

    # 20 + three refunds of 40
    assert await services.ledger.get_balance("user_1") == Decimal("140")
    assert await services.ledger.ledger_sum("user_1") == Decimal("140")

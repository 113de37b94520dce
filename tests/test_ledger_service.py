import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.core.exceptions import InsufficientBalance
from app.db.models.credit import CreditTransaction, LedgerKind
from app.db.models.generation import GenerationStatus


async def _entries(session_factory, user_id, kind=None):
    query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
    if kind:
        query = query.where(CreditTransaction.kind == kind)
    async with session_factory() as db:
        return list((await db.execute(query)).scalars().all())


@pytest.mark.asyncio
async def test_deduct_and_ledger_sum_match_balance(services, session_factory, fund):
    await fund("user_1", 100)

    async with session_factory() as db:
        entry = await services.ledger.deduct(db, "user_1", 40, "Veo: a cat")
        await db.commit()

    assert entry.amount == Decimal("-40")
    assert entry.balance_after == Decimal("60")
    assert await services.ledger.get_balance("user_1") == Decimal("60")
    assert await services.ledger.ledger_sum("user_1") == Decimal("60")


@pytest.mark.asyncio
async def test_deduct_insufficient_balance_writes_nothing(services, session_factory, fund):
    await fund("user_1", 30)

    with pytest.raises(InsufficientBalance) as exc_info:
        async with session_factory() as db:
            await services.ledger.deduct(db, "user_1", 40, "Veo: a cat")
            await db.commit()

    assert exc_info.value.available == Decimal("30")
    assert await services.ledger.get_balance("user_1") == Decimal("30")
    assert len(await _entries(session_factory, "user_1", LedgerKind.DEDUCTION)) == 0


@pytest.mark.asyncio
async def test_deduct_for_unknown_user_is_insufficient(services, session_factory):
    with pytest.raises(InsufficientBalance):
        async with session_factory() as db:
            await services.ledger.deduct(db, "nobody", 1, "x")
    assert await services.ledger.get_balance("nobody") == 0


@pytest.mark.asyncio
async def test_add_credits_creates_balance_row(services):
    entry = await services.ledger.add_credits("new_user", 350, LedgerKind.TOPUP, "Top-up 350")

    assert entry is not None
    assert entry.balance_after == Decimal("350")
    assert await services.ledger.get_balance("new_user") == Decimal("350")


@pytest.mark.asyncio
async def test_add_credits_is_idempotent_on_reference(services, session_factory):
    first = await services.ledger.add_credits("user_1", 500, LedgerKind.TOPUP, "Top-up", reference_id="chrg_1")
    second = await services.ledger.add_credits("user_1", 500, LedgerKind.TOPUP, "Top-up", reference_id="chrg_1")

    assert first is not None
    assert second is None
    assert await services.ledger.get_balance("user_1") == Decimal("500")
    assert len(await _entries(session_factory, "user_1")) == 1


@pytest.mark.asyncio
async def test_negative_adjustment_cannot_overdraw(services, fund):
    await fund("user_1", 10)

    with pytest.raises(InsufficientBalance):
        await services.ledger.add_credits("user_1", -20, LedgerKind.ADJUSTMENT, "Correction")

    assert await services.ledger.get_balance("user_1") == Decimal("10")
    assert await services.ledger.ledger_sum("user_1") == Decimal("10")


@pytest.mark.asyncio
async def test_refund_failed_generation_once(services, session_factory, fund, add_generation):
    await fund("user_1", 60)
    await add_generation("gen_1", status=GenerationStatus.FAILED, credits_charged=40)

    first = await services.ledger.refund("gen_1")
    second = await services.ledger.refund("gen_1")

    assert first["refunded"] is True
    assert first["amount"] == Decimal("40")
    assert second == {"refunded": False, "message": "Generation already refunded"}
    assert await services.ledger.get_balance("user_1") == Decimal("100")

    refunds = await _entries(session_factory, "user_1", LedgerKind.REFUND)
    assert len(refunds) == 1
    assert refunds[0].related_generation_id == "gen_1"
    job = await services.store.get("gen_1")
    assert job.refunded is True


@pytest.mark.asyncio
async def test_concurrent_refunds_append_one_entry(services, session_factory, fund, add_generation):
    await fund("user_1", 60)
    await add_generation("gen_1", status=GenerationStatus.FAILED, credits_charged=40)

    results = await asyncio.gather(*[services.ledger.refund("gen_1") for _ in range(5)])

    assert sum(1 for r in results if r["refunded"]) == 1
    assert len(await _entries(session_factory, "user_1", LedgerKind.REFUND)) == 1
    assert await services.ledger.get_balance("user_1") == Decimal("100")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, credits, message",
    [
        (GenerationStatus.PROCESSING, 40, "Only failed generations can be refunded"),
        (GenerationStatus.COMPLETED, 40, "Only failed generations can be refunded"),
        (GenerationStatus.FAILED, 0, "Nothing to refund"),
    ],
)
async def test_refund_ineligible_generation_is_noop(services, fund, add_generation, status, credits, message):
    await fund("user_1", 60)
    await add_generation("gen_1", status=status, credits_charged=credits)

    result = await services.ledger.refund("gen_1")

    assert result == {"refunded": False, "message": message}
    assert await services.ledger.get_balance("user_1") == Decimal("60")


@pytest.mark.asyncio
async def test_refund_unknown_generation(services):
    assert await services.ledger.refund("missing") == {"refunded": False, "message": "Generation not found"}

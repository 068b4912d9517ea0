"""Stored procedure gateway against a database without the functions installed."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db import procedures
from tests.conftest import USER_ID


@pytest.fixture
def real_call(monkeypatch: pytest.MonkeyPatch, fake_procedures):
    """Undo the autouse FakeProcedures patch."""
    monkeypatch.undo()
    return procedures.call


@pytest.mark.asyncio
async def test_missing_function_is_reported(real_call, catalog: AsyncSession) -> None:
    with pytest.raises(procedures.ProcedureError) as exc_info:
        await real_call(catalog, procedures.AWARD_XP, p_user_id=USER_ID, p_xp_amount=10)

    assert exc_info.value.name == procedures.AWARD_XP
    assert exc_info.value.is_missing


@pytest.mark.asyncio
async def test_session_usable_after_failure(real_call, catalog: AsyncSession) -> None:
    with pytest.raises(procedures.ProcedureError):
        await real_call(catalog, procedures.INCREMENT_LESSONS_COMPLETED, p_user_id=USER_ID)

    from academy.gamification.xp_service import get_xp_state

    assert await get_xp_state(catalog, USER_ID) == (0, 1, 0)


@pytest.mark.asyncio
async def test_unknown_procedure_is_rejected(real_call, catalog: AsyncSession) -> None:
    with pytest.raises(procedures.ProcedureError, match="unknown procedure"):
        await real_call(catalog, "drop_everything")

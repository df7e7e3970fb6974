"""API key issuing and validation, and release ownership records."""
from __future__ import annotations

import pytest

from release_agent.config import parse_api_keys
from release_agent.services.accounts import AccountService
from support import FakeClock


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_api_keys_are_parsed_from_the_environment_format() -> None:
    raw = "rk_one:jane:Jane Doe, rk_two:sam ,broken,:nobody:x,"

    assert parse_api_keys(raw) == (("rk_one", "jane", "Jane Doe"), ("rk_two", "sam", "sam"))


@pytest.mark.anyio
async def test_preset_keys_validate() -> None:
    accounts = AccountService([("rk_one", "jane", "Jane Doe")], clock=FakeClock())

    api_key = await accounts.validate("rk_one")

    assert api_key is not None
    assert (api_key.user_id, api_key.name, api_key.enabled) == ("jane", "Jane Doe", True)
    assert await accounts.validate("rk_other") is None
    assert await accounts.validate(None) is None
    assert await accounts.validate("") is None


@pytest.mark.anyio
async def test_issued_keys_are_unique_and_revocable() -> None:
    clock = FakeClock()
    accounts = AccountService(clock=clock)

    first = await accounts.issue("jane", "laptop")
    second = await accounts.issue("jane", "phone")

    assert first.key != second.key
    assert first.key.startswith("rk_")
    assert first.created_at == clock.now
    assert (await accounts.validate(first.key)).user_id == "jane"

    assert await accounts.revoke(first.key) is True
    assert await accounts.validate(first.key) is None
    assert await accounts.validate(second.key) is not None
    assert await accounts.revoke("rk_missing") is False


@pytest.mark.anyio
async def test_release_ownership_is_recorded_per_user() -> None:
    accounts = AccountService()

    await accounts.set_release_owner("55", "user:jane")
    await accounts.set_release_owner("56", "user:jane")
    await accounts.set_release_owner("55", "user:jane")
    await accounts.set_release_owner("70", "user:sam")

    assert await accounts.release_owner("55") == "user:jane"
    assert await accounts.release_owner("99") is None
    assert await accounts.release_ids_for("user:jane") == ["55", "56"]
    assert await accounts.release_ids_for("user:nobody") == []

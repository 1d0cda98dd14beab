"""Unit tests for wire payloads and preference persistence."""

import json

import pytest

from src.database import Database
from src.models import SpinFailure, SpinOutcome, from_units, to_units
from tests.stubs import make_spin_event


@pytest.mark.unit
class TestSpinPayloads:
    """Test the result shapes sent to the game surface."""

    def test_unit_conversion(self):
        assert to_units(0.1) == 100_000
        assert to_units(0.3) == 300_000
        assert from_units(2_500_000) == 2.5

    def test_winning_outcome_payload(self):
        event = make_spin_event(tot_win=1_250_000, bonus=True, bonus_prize=40_000_000, bonus_prize_indexes=[2, 4])

        payload = SpinOutcome.from_event(event, balance_units=3_000_000).to_payload()

        assert payload["res"] is True
        assert payload["win"] is True
        assert payload["tot_win"] == 1.25
        assert payload["money"] == 3.0
        assert payload["bonus_prize"] == 40.0
        assert json.loads(payload["prize_list"]) == [40, 80]
        assert payload["_aBonusId"] == ["BONUS_GAME"]
        assert payload["bonusData"]["bonus_win"] == 40.0

    def test_losing_outcome_payload(self):
        payload = SpinOutcome.from_event(make_spin_event(), balance_units=900_000).to_payload()

        assert payload["win"] is False
        assert payload["tot_win"] == 0
        assert payload["_aBonusId"] == []
        assert payload["pattern"] == make_spin_event().pattern

    def test_failure_payload(self):
        assert SpinFailure(err="timeout", kind="timeout").to_payload() == {"res": False, "err": "timeout"}


@pytest.mark.unit
class TestPreferences:
    """Test the persisted network preference."""

    @pytest.fixture
    async def test_db(self, tmp_path):
        """Create a temporary test database."""
        db = Database(str(tmp_path / "test.db"))
        await db.initialize()
        return db

    @pytest.mark.asyncio
    async def test_missing_preference(self, test_db):
        assert await test_db.get_network_preference() is None

    @pytest.mark.asyncio
    async def test_preference_overwritten(self, test_db):
        await test_db.set_network_preference("arbitrum")
        await test_db.set_network_preference("arbitrumSepolia")

        assert await test_db.get_network_preference() == "arbitrumSepolia"

    @pytest.mark.asyncio
    async def test_preference_survives_reopen(self, test_db):
        await test_db.set_preference("theme", "dark")

        reopened = Database(test_db.db_path)
        await reopened.initialize()

        assert await reopened.get_preference("theme") == "dark"

"""
Governance Store Test Suite

Coverage:
  - MemoryStore / SQLiteStore: config, state, polls, votes
  - Transaction rollback on failure, nested transactions
  - SQLite persistence across restarts
"""

import os
import sys
from decimal import Decimal

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from stakegov.exceptions import StorageError
from stakegov.governance.config import GovernanceConfig, GovernanceState, PollConfigSnapshot
from stakegov.governance.contract import GovernanceContract
from stakegov.governance.polls import ExecuteMsg, Poll, PollStatus
from stakegov.governance.voting import Vote, VoteOption
from stakegov.storage import MemoryStore, SQLiteStore
from stakegov.tokens.ledger import StakingLedger


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ALICE = "0xPQ" + "A1" * 32
BOB = "0xPQ" + "B2" * 32
EVE = "0xPQ" + "E5" * 32
OWNER = "0xPQ" + "00" * 32
GOV = "stakegov_governance"


def make_poll(pid=1, **kwargs) -> Poll:
    defaults = dict(
        creator=EVE,
        deposit=Decimal("100"),
        title=f"Poll number {pid}",
        description="Test description",
        start_height=1,
        end_height=11,
        staked_supply=Decimal("1000"),
        config=PollConfigSnapshot(Decimal("0.3"), Decimal("0.5"), 0, 100, False, 1),
    )
    defaults.update(kwargs)
    return Poll(id=pid, **defaults)


def make_vote(poll_id=1, voter=ALICE, option=VoteOption.YES, weight="200") -> Vote:
    return Vote(poll_id, voter, option, Decimal(weight), cast_height=2, locked_until=11)


async def open_sqlite(tmp_path, name="gov.db") -> SQLiteStore:
    return await SQLiteStore.create(str(tmp_path / name))


class _StoreContract:
    """Shared behaviour run against both store implementations."""

    async def make_store(self, tmp_path):
        raise NotImplementedError

    @pytest.mark.asyncio
    async def test_config_absent_until_saved(self, tmp_path):
        store = await self.make_store(tmp_path)
        assert await store.get_config() is None
        with pytest.raises(StorageError):
            await store.load_config()
        await store.save_config(GovernanceConfig(owner=OWNER, quorum=Decimal("0.25")))
        config = await store.load_config()
        assert config.quorum == Decimal("0.25")
        assert config.owner == OWNER
        await store.close()

    @pytest.mark.asyncio
    async def test_state_defaults(self, tmp_path):
        store = await self.make_store(tmp_path)
        state = await store.load_state()
        assert state.poll_count == 0
        await store.save_state(GovernanceState(3, Decimal("300"), Decimal("100")))
        state = await store.load_state()
        assert (state.poll_count, state.total_deposit, state.total_forfeited) == (
            3, Decimal("300"), Decimal("100")
        )
        await store.close()

    @pytest.mark.asyncio
    async def test_poll_roundtrip(self, tmp_path):
        store = await self.make_store(tmp_path)
        poll = make_poll(execute_msgs=[ExecuteMsg(1, "c1", b"payload")])
        poll.yes_votes = Decimal("12.5")
        await store.put_poll(poll)
        loaded = await store.get_poll(1)
        assert loaded.yes_votes == Decimal("12.5")
        assert loaded.execute_msgs[0].msg == b"payload"
        assert await store.get_poll(2) is None
        await store.close()

    @pytest.mark.asyncio
    async def test_returned_polls_are_copies(self, tmp_path):
        store = await self.make_store(tmp_path)
        await store.put_poll(make_poll())
        loaded = await store.get_poll(1)
        loaded.yes_votes = Decimal("999")
        assert (await store.get_poll(1)).yes_votes == Decimal("0")
        await store.close()

    @pytest.mark.asyncio
    async def test_list_polls_filter_and_order(self, tmp_path):
        store = await self.make_store(tmp_path)
        for pid in range(1, 5):
            poll = make_poll(pid)
            if pid % 2 == 0:
                poll.mark_passed(11)
            await store.put_poll(poll)
        passed = await store.list_polls(status=PollStatus.PASSED)
        assert [p.id for p in passed] == [2, 4]
        desc = await store.list_polls(descending=True, limit=3)
        assert [p.id for p in desc] == [4, 3, 2]
        after = await store.list_polls(start_after=2, limit=1)
        assert [p.id for p in after] == [3]
        await store.close()

    @pytest.mark.asyncio
    async def test_votes(self, tmp_path):
        store = await self.make_store(tmp_path)
        await store.put_poll(make_poll())
        await store.put_vote(make_vote(voter=BOB, option=VoteOption.NO))
        await store.put_vote(make_vote(voter=ALICE))
        assert (await store.get_vote(1, BOB)).option == VoteOption.NO
        assert await store.get_vote(1, EVE) is None
        votes = await store.list_votes(1)
        assert [v.voter for v in votes] == [ALICE, BOB]
        desc = await store.list_votes(1, descending=True, start_after=BOB)
        assert [v.voter for v in desc] == [ALICE]
        await store.close()

    @pytest.mark.asyncio
    async def test_votes_by_voter(self, tmp_path):
        store = await self.make_store(tmp_path)
        for pid in (1, 2, 3):
            await store.put_poll(make_poll(pid))
        await store.put_vote(make_vote(poll_id=3, voter=ALICE))
        await store.put_vote(make_vote(poll_id=1, voter=ALICE, option=VoteOption.NO))
        await store.put_vote(make_vote(poll_id=2, voter=BOB))
        votes = await store.list_votes_by_voter(ALICE)
        assert [(v.poll_id, v.option) for v in votes] == [(1, VoteOption.NO), (3, VoteOption.YES)]
        assert await store.list_votes_by_voter(EVE) == []
        await store.close()

    @pytest.mark.asyncio
    async def test_rollback(self, tmp_path):
        store = await self.make_store(tmp_path)
        await store.save_state(GovernanceState(1))
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.put_poll(make_poll())
                await store.save_state(GovernanceState(2))
                raise RuntimeError("abort")
        assert await store.get_poll(1) is None
        assert (await store.load_state()).poll_count == 1
        assert not store.in_transaction
        await store.close()

    @pytest.mark.asyncio
    async def test_commit(self, tmp_path):
        store = await self.make_store(tmp_path)
        async with store.transaction():
            await store.put_poll(make_poll())
        assert await store.get_poll(1) is not None
        await store.close()

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, tmp_path):
        store = await self.make_store(tmp_path)
        with pytest.raises(RuntimeError):
            async with store.transaction():
                async with store.transaction():
                    await store.put_poll(make_poll())
                assert store.in_transaction
                raise RuntimeError("outer fails")
        assert await store.get_poll(1) is None
        await store.close()


class TestMemoryStore(_StoreContract):

    async def make_store(self, tmp_path):
        return MemoryStore()


class TestSQLiteStore(_StoreContract):

    async def make_store(self, tmp_path):
        return await open_sqlite(tmp_path)

    @pytest.mark.asyncio
    async def test_duplicate_vote_is_storage_error(self, tmp_path):
        store = await open_sqlite(tmp_path)
        await store.put_poll(make_poll())
        await store.put_vote(make_vote())
        with pytest.raises(StorageError):
            await store.put_vote(make_vote())
        await store.close()

    @pytest.mark.asyncio
    async def test_closed_store(self, tmp_path):
        store = await open_sqlite(tmp_path)
        await store.close()
        with pytest.raises(StorageError):
            await store.get_poll(1)

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        store = await SQLiteStore.create(str(tmp_path / "nested" / "dir" / "gov.db"))
        assert (tmp_path / "nested" / "dir" / "gov.db").exists()
        await store.close()


class TestSQLitePersistence:
    """Contract state survives a host restart."""

    @pytest.mark.asyncio
    async def test_restart(self, tmp_path):
        ledger = StakingLedger()
        await ledger.mint(ALICE, Decimal("300"))
        await ledger.stake(ALICE, Decimal("300"), height=0)
        await ledger.mint(EVE, Decimal("500"))

        store = await open_sqlite(tmp_path)
        contract = GovernanceContract(store, ledger, GOV)
        await contract.instantiate(
            GovernanceConfig(owner=OWNER, voting_period=10, proposal_deposit=Decimal("100"))
        )
        async with store.transaction():
            await contract.polls.create_poll(
                creator=EVE, deposit=Decimal("100"), title="Persisted poll",
                description="Survives restart", now=1,
            )
        async with store.transaction():
            await contract.votes.cast_vote(1, ALICE, VoteOption.YES, now=2)
        await store.close()

        reopened = await open_sqlite(tmp_path)
        contract = GovernanceContract(reopened, ledger, GOV)
        config = await contract.instantiate(GovernanceConfig(owner=BOB))
        assert config.owner == OWNER

        poll = await contract.polls.get_poll(1)
        assert poll.title == "Persisted poll"
        assert poll.yes_votes == Decimal("300")
        assert (await contract.votes.get_vote(1, ALICE)).weight == Decimal("300")
        state = await reopened.load_state()
        assert state.poll_count == 1
        assert state.total_deposit == Decimal("100")

        outcome = await contract.polls.finalize(1, now=11)
        assert outcome.status == PollStatus.PASSED
        await reopened.close()

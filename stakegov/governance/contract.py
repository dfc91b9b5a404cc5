"""
Governance contract entry point.

Dispatches HandleMsg / QueryMsg variants to the poll registry, vote ledger
and tally engine. Each handled action runs in one store transaction: if
anything raises, none of its writes are kept.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..exceptions import InvalidMessageError
from ..logger import get_logger
from .config import GovernanceConfig, GovernanceState
from .execution import TallyEngine
from .msg import (
    CastVote,
    ConfigQuery,
    CreatePoll,
    EndPoll,
    Env,
    ExecutePoll,
    ExpirePoll,
    HandleMsg,
    HandleResponse,
    PollQuery,
    PollsQuery,
    QueryMsg,
    StakerQuery,
    StateQuery,
    UpdateConfig,
    VoteQuery,
    VotersQuery,
    decode_handle_msg,
    decode_query_msg,
)
from .polls import Poll, PollRegistry
from .snapshot import StakeSnapshotAccessor
from .voting import VoteLedger

logger = get_logger(__name__)


class GovernanceContract:
    """
    Stake-weighted poll governance.

    Wiring:
        snapshot  →  voting power / staked supply lookups on the ledger
        polls     →  PollRegistry (creation, escrow, finalize)
        votes     →  VoteLedger (one frozen-weight vote per voter, stake locks)
        engine    →  TallyEngine (outcome, deposit settlement, execution window)
    """

    def __init__(
        self,
        store,
        ledger,
        address: str,
        snapshot: Optional[StakeSnapshotAccessor] = None,
    ):
        self.address = address
        self._store = store
        self._ledger = ledger
        self.snapshot = snapshot or StakeSnapshotAccessor.from_ledger(ledger)
        self.engine = TallyEngine(ledger, address)
        self.polls = PollRegistry(store, self.snapshot, ledger, address, self.engine)
        self.votes = VoteLedger(store, self.polls, self.snapshot)
        ledger.add_unstake_guard(self.locked_stake)

        self._handlers: Dict[type, Callable[[Env, Any], Awaitable[HandleResponse]]] = {
            CreatePoll: self._create_poll,
            CastVote: self._cast_vote,
            EndPoll: self._end_poll,
            ExecutePoll: self._execute_poll,
            ExpirePoll: self._expire_poll,
            UpdateConfig: self._update_config,
        }
        self._queries: Dict[type, Callable[[Any], Awaitable[Dict[str, Any]]]] = {
            ConfigQuery: self._query_config,
            StateQuery: self._query_state,
            PollQuery: self._query_poll,
            PollsQuery: self._query_polls,
            VoteQuery: self._query_vote,
            VotersQuery: self._query_voters,
            StakerQuery: self._query_staker,
        }

    @property
    def store(self):
        return self._store

    # ── Genesis ───────────────────────────────────────────────────────

    async def instantiate(self, config: GovernanceConfig) -> GovernanceConfig:
        """Store the genesis config. A persisted config is kept as is."""
        async with self._store.transaction():
            existing = await self._store.get_config()
            if existing is not None:
                logger.info(
                    f"Governance contract {self.address} already instantiated "
                    f"(config v{existing.version})"
                )
                return existing
            await self._store.save_config(config)
            await self._store.save_state(GovernanceState())
        logger.info(
            f"Governance contract {self.address} instantiated: owner={config.owner}, "
            f"quorum={config.quorum}, threshold={config.threshold}, "
            f"voting_period={config.voting_period}, timelock={config.timelock_period}"
        )
        return config

    # ── Handle ────────────────────────────────────────────────────────

    async def handle(
        self, env: Env, msg: Union[HandleMsg, bytes, str, Dict[str, Any]]
    ) -> HandleResponse:
        if not isinstance(msg, HandleMsg):
            msg = decode_handle_msg(msg)
        handler = self._handlers.get(type(msg))
        if handler is None:
            raise InvalidMessageError(f"{type(msg).__name__} is not a handle message")
        async with self._store.transaction():
            return await handler(env, msg)

    async def _create_poll(self, env: Env, msg: CreatePoll) -> HandleResponse:
        poll = await self.polls.create_poll(
            creator=env.sender,
            deposit=msg.deposit,
            title=msg.title,
            description=msg.description,
            link=msg.link,
            execute_msgs=msg.execute_msgs,
            now=env.block.height,
            created_at=env.block.time,
        )
        return HandleResponse(
            attributes=[
                ("action", "create_poll"),
                ("creator", poll.creator),
                ("poll_id", str(poll.id)),
                ("end_height", str(poll.end_height)),
            ],
            data={"pollId": poll.id},
        )

    async def _cast_vote(self, env: Env, msg: CastVote) -> HandleResponse:
        vote = await self.votes.cast_vote(msg.poll_id, env.sender, msg.vote, env.block.height)
        return HandleResponse(
            attributes=[
                ("action", "cast_vote"),
                ("poll_id", str(vote.poll_id)),
                ("amount", str(vote.weight)),
                ("voter", vote.voter),
                ("vote_option", vote.option.wire_name),
            ],
            data=vote.to_dict(),
        )

    async def _end_poll(self, env: Env, msg: EndPoll) -> HandleResponse:
        outcome = await self.polls.finalize(msg.poll_id, env.block.height)
        return HandleResponse(
            attributes=[
                ("action", "end_poll"),
                ("poll_id", str(outcome.poll_id)),
                ("rejected_reason", outcome.reason),
                ("passed", str(outcome.passed).lower()),
            ],
            batch=outcome.batch,
            data=outcome.to_dict(),
        )

    async def _execute_poll(self, env: Env, msg: ExecutePoll) -> HandleResponse:
        poll = await self.polls.get_poll(msg.poll_id)
        batch = self.engine.prepare_execution(poll, env.block.height)
        logger.info(f"Poll #{poll.id} released {len(batch)} message(s) for execution")
        return HandleResponse(
            attributes=[("action", "execute_poll"), ("poll_id", str(poll.id))],
            batch=batch,
        )

    async def _expire_poll(self, env: Env, msg: ExpirePoll) -> HandleResponse:
        poll = await self.polls.get_poll(msg.poll_id)
        self.engine.expire(poll, env.block.height)
        await self.polls.save(poll)
        return HandleResponse(
            attributes=[("action", "expire_poll"), ("poll_id", str(poll.id))],
        )

    async def _update_config(self, env: Env, msg: UpdateConfig) -> HandleResponse:
        config = await self._store.load_config()
        new_config = config.updated(env.sender, **msg.changes())
        await self._store.save_config(new_config)
        return HandleResponse(
            attributes=[
                ("action", "update_config"),
                ("config_version", str(new_config.version)),
            ],
        )

    # ── Vote locks ────────────────────────────────────────────────────

    async def locked_stake(self, address: str) -> Decimal:
        """Unstake guard registered with the ledger."""
        return await self.votes.locked_stake(address)

    # ── Host callback ─────────────────────────────────────────────────

    async def record_execution(
        self,
        poll_id: int,
        success: bool,
        height: int,
        error: Optional[str] = None,
        failed_index: Optional[int] = None,
    ) -> Poll:
        """Record the host's result for a released batch. Not a HandleMsg."""
        async with self._store.transaction():
            poll = await self.polls.get_poll(poll_id)
            self.engine.record_execution(
                poll, success, height, error=error, failed_index=failed_index
            )
            await self.polls.save(poll)
        return poll

    # ── Query ─────────────────────────────────────────────────────────

    async def query(self, msg: Union[QueryMsg, bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(msg, QueryMsg):
            msg = decode_query_msg(msg)
        return await self._queries[type(msg)](msg)

    async def _query_config(self, msg: ConfigQuery) -> Dict[str, Any]:
        return (await self._store.load_config()).to_dict()

    async def _query_state(self, msg: StateQuery) -> Dict[str, Any]:
        state = (await self._store.load_state()).to_dict()
        state["configVersion"] = (await self._store.load_config()).version
        return state

    async def _query_poll(self, msg: PollQuery) -> Dict[str, Any]:
        return (await self.polls.get_poll(msg.poll_id)).to_dict()

    async def _query_polls(self, msg: PollsQuery) -> Dict[str, Any]:
        polls = await self.polls.list_polls(
            status=msg.filter,
            start_after=msg.start_after,
            limit=msg.limit,
            order_by=msg.order_by,
        )
        return {"polls": [p.to_dict() for p in polls]}

    async def _query_vote(self, msg: VoteQuery) -> Dict[str, Any]:
        vote = await self.votes.get_vote(msg.poll_id, msg.voter)
        return {"vote": vote.to_dict() if vote is not None else None}

    async def _query_voters(self, msg: VotersQuery) -> Dict[str, Any]:
        votes = await self.votes.list_voters(
            msg.poll_id,
            start_after=msg.start_after,
            limit=msg.limit,
            order_by=msg.order_by,
        )
        return {"voters": [v.to_dict() for v in votes]}

    async def _query_staker(self, msg: StakerQuery) -> Dict[str, Any]:
        locked = await self.votes.locked_votes(msg.address)
        return {
            "address": msg.address,
            "balance": str(self._ledger.staked_of(msg.address)),
            "lockedBalance": str(max((v.weight for v in locked), default=Decimal("0"))),
            "locks": [
                {"pollId": v.poll_id, "vote": v.option.wire_name, "weight": str(v.weight)}
                for v in locked
            ],
        }

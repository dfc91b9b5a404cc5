"""
StakeGov Host

Single-threaded transaction host for the governance contract. Calls are
dispatched one at a time; a passed poll's messages are routed to the
contract registered at each message's target address, and the result is
reported back to the governance contract.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .governance.contract import GovernanceContract
from .governance.execution import ExecutionBatch, PollExecutionError
from .governance.msg import BlockInfo, Env, HandleMsg, HandleResponse
from .logger import get_logger, set_log_level
from .storage import GovernanceStore, open_store
from .tokens.ledger import StakingLedger

logger = get_logger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[Any]]


class Host:
    """
    Serial dispatcher for governance calls.

    Holds the chain height, the contract registry used to run execute
    messages, and the lock that keeps one call in flight at a time.
    """

    def __init__(
        self,
        contract: GovernanceContract,
        ledger: StakingLedger,
        height: int = 1,
    ):
        self.contract = contract
        self.ledger = ledger
        self._height = height
        self._lock = asyncio.Lock()
        self._handlers: Dict[str, MessageHandler] = {}

        self.register_contract(ledger.address, ledger.handle_message)
        self.register_contract(contract.address, self._handle_self_message)

    @classmethod
    async def create(
        cls,
        node_config,
        ledger: Optional[StakingLedger] = None,
        store: Optional[GovernanceStore] = None,
    ) -> "Host":
        """Open the store, instantiate the contract and return a ready host."""
        set_log_level(node_config.node.log_level)
        ledger = ledger or StakingLedger()
        store = store or await open_store(node_config.database)
        address = node_config.node.governance_address
        contract = GovernanceContract(store, ledger, address)
        await contract.instantiate(node_config.governance.to_governance_config(address))
        return cls(contract, ledger, height=node_config.node.start_height)

    async def close(self):
        await self.contract.store.close()

    # ── Chain ─────────────────────────────────────────────────────────

    @property
    def height(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("Cannot move the chain backwards")
        self._height += blocks
        return self._height

    def _env(self, sender: str) -> Env:
        return Env(
            sender=sender,
            block=BlockInfo(height=self._height, time=time.time()),
            contract_address=self.contract.address,
        )

    # ── Registry ──────────────────────────────────────────────────────

    def register_contract(self, address: str, handler: MessageHandler):
        """Route execute messages addressed to *address* to *handler*."""
        self._handlers[address] = handler
        logger.debug(f"Host: contract registered at {address}")

    async def _handle_self_message(self, sender: str, payload: bytes) -> HandleResponse:
        # Runs inside an outer dispatch, so the lock is already held
        return await self._dispatch(sender, payload)

    # ── Dispatch ──────────────────────────────────────────────────────

    async def execute(
        self, sender: str, msg: Union[HandleMsg, bytes, str, Dict[str, Any]]
    ) -> HandleResponse:
        """
        Handle one action from *sender* at the current height.

        Raises PollExecutionError after recording EXECUTION_FAILED when a
        released message fails.
        """
        async with self._lock:
            return await self._dispatch(sender, msg)

    async def _dispatch(self, sender: str, msg) -> HandleResponse:
        response = await self.contract.handle(self._env(sender), msg)
        if response.batch is not None:
            await self._run_batch(response.batch)
        return response

    async def _run_batch(self, batch: ExecutionBatch):
        """
        Run a released batch as one unit.

        Store and ledger writes of every message are undone if any message
        fails; EXECUTION_FAILED is then recorded on its own.
        """
        engine = self.contract.engine
        engine.begin_execution(batch.poll_id)
        index = 0
        try:
            async with self.contract.store.transaction(), self.ledger.transaction():
                for index, message in enumerate(batch.messages):
                    handler = self._handlers.get(message.contract)
                    if handler is None:
                        raise LookupError(f"No contract registered at {message.contract}")
                    await handler(self.contract.address, bytes(message.msg))
                await self.contract.record_execution(batch.poll_id, True, self._height)
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            await self.contract.record_execution(
                batch.poll_id, False, self._height, error=reason, failed_index=index
            )
            raise PollExecutionError(batch.poll_id, index, reason) from e
        finally:
            engine.end_execution(batch.poll_id)

        logger.info(f"Poll #{batch.poll_id} executed {len(batch)} message(s)")

    async def query(self, msg) -> Dict[str, Any]:
        return await self.contract.query(msg)


import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from noncequeue.constants import DEFAULT_PROCESS_INTERVAL, DEFAULT_QUEUE_TTL
from noncequeue.errors import User_Operation_Error
from noncequeue.ledger import Ledger_Reader, Nonce_Read_Request, Read_Strategy
from noncequeue.mempool import Mempool
from noncequeue.user_operation import (
    Mempool_User_Operation,
    derive_user_operation,
    get_nonce_key_and_value,
    get_user_operation_hash,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Queued_User_Operation:
    entry_point: ChecksumAddress
    user_operation_hash: HexBytes
    mempool_user_operation: Mempool_User_Operation
    nonce_key: int
    nonce_value: int
    added_at: float


class Nonce_Queue_Store:
    """Insertion-ordered queued operations; only appends and whole-store filtering mutate it."""

    def __init__(self):
        self._entries: List[Queued_User_Operation] = []
        self._lock = threading.Lock()

    def append(self, entry: Queued_User_Operation) -> None:
        with self._lock:
            self._entries.append(entry)

    def remove_matching(self, predicate: Callable[[Queued_User_Operation], bool]) -> int:
        """Replace the contents with the entries not matching predicate; returns the number removed."""
        with self._lock:
            kept = [entry for entry in self._entries if not predicate(entry)]
            removed = len(self._entries) - len(kept)
            self._entries = kept
        return removed

    def snapshot(self) -> Tuple[Queued_User_Operation, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Queued_User_Operation]:
        return iter(self.snapshot())


class Nonce_Queuer:
    """
    Holds user operations whose nonce is ahead of the chain and releases them
    to the mempool once the on-chain nonce catches up.

    A single owned task runs ``process`` every ``interval`` seconds. Runs never
    overlap: the loop awaits each run before sleeping and ``process`` holds a
    lock, so a direct call waits for any run already in flight. Operations that
    stay queued longer than ``ttl`` seconds are dropped without resubmission.
    """

    def __init__(
        self,
        mempool: Mempool,
        ledger_reader: Ledger_Reader,
        chain_id: int,
        interval: float = DEFAULT_PROCESS_INTERVAL,
        ttl: float = DEFAULT_QUEUE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.mempool = mempool
        self.ledger_reader = ledger_reader
        self.chain_id = chain_id
        self.interval = interval
        self.ttl = ttl
        self.clock = clock
        self.store = Nonce_Queue_Store()

        self._process_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the periodic reconciler task."""
        if self._running:
            logger.debug("Nonce queue is already running.")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="nonce-queue")
        logger.info(f"Nonce queue started (interval={self.interval}s, ttl={self.ttl}s) ✅")

    async def stop(self) -> None:
        """Stop the reconciler task and wait for it to finish."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        logger.debug(f"Nonce queue stopped with {len(self.store)} queued operations.")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.process()
            except Exception as e:
                logger.exception(f"Error in nonce queue run: {e}")
            await asyncio.sleep(self.interval)

    def add(self, mempool_user_operation: Mempool_User_Operation, entry_point: str) -> Queued_User_Operation:
        """Queue an operation until its nonce becomes current on-chain."""
        user_operation = derive_user_operation(mempool_user_operation)
        nonce_key, nonce_value = get_nonce_key_and_value(user_operation.nonce)
        try:
            entry_point = to_checksum_address(entry_point)
        except (TypeError, ValueError) as e:
            raise User_Operation_Error(f"Invalid entry point address: {entry_point!r}") from e

        entry = Queued_User_Operation(
            entry_point=entry_point,
            user_operation_hash=get_user_operation_hash(user_operation, entry_point, self.chain_id),
            mempool_user_operation=mempool_user_operation,
            nonce_key=nonce_key,
            nonce_value=nonce_value,
            added_at=self.clock(),
        )
        self.store.append(entry)
        logger.debug(
            f"Queued user operation {entry.user_operation_hash.hex()} "
            f"(key={nonce_key}, value={nonce_value})"
        )
        return entry

    async def process(self) -> List[Queued_User_Operation]:
        """Run one reconciliation pass; returns the operations released to the mempool."""
        async with self._process_lock:
            cutoff = self.clock() - self.ttl
            expired = self.store.remove_matching(lambda qop: qop.added_at <= cutoff)
            if expired:
                logger.info(f"Dropped {expired} user operations queued for more than {self.ttl}s")

            if len(self.store) == 0:
                return []

            available_ops = await self.get_available_user_operations(self.store.snapshot())
            if not available_ops:
                return []

            available_hashes = {qop.user_operation_hash for qop in available_ops}
            self.store.remove_matching(lambda qop: qop.user_operation_hash in available_hashes)

            for qop in available_ops:
                self.resubmit_user_operation(qop)

            logger.info(
                f"Submitted user operations from nonce queue: "
                f"{[qop.user_operation_hash.hex() for qop in available_ops]}"
            )
            return available_ops

    def resubmit_user_operation(self, qop: Queued_User_Operation) -> bool:
        op_hash = qop.user_operation_hash.hex()
        logger.info(f"Submitting user operation {op_hash} from nonce queue")
        try:
            result = self.mempool.add(qop.mempool_user_operation, qop.entry_point)
        except Exception as e:
            logger.exception(f"Error adding user operation {op_hash}: {e}")
            return False
        if result:
            logger.info(f"Added user operation {op_hash}")
        else:
            logger.error(f"Error adding user operation {op_hash}: rejected by mempool")
        return bool(result)

    async def get_available_user_operations(
        self, queued_user_operations: Tuple[Queued_User_Operation, ...]
    ) -> List[Queued_User_Operation]:
        """Return the snapshot entries whose nonce value equals the current on-chain value."""
        requests = [
            Nonce_Read_Request(
                entry_point=qop.entry_point,
                sender=derive_user_operation(qop.mempool_user_operation).sender,
                nonce_key=qop.nonce_key,
            )
            for qop in queued_user_operations
        ]

        outcome = await self.ledger_reader.read_nonces(requests)
        if outcome.strategy is Read_Strategy.FALLBACK:
            logger.warning(f"Fetched {len(requests)} nonces with per-operation fallback")

        if len(outcome.results) != len(queued_user_operations):
            logger.error(
                f"Error fetching nonces: expected {len(queued_user_operations)} results, "
                f"got {len(outcome.results)}"
            )
            return []

        available: List[Queued_User_Operation] = []
        for qop, result in zip(queued_user_operations, outcome.results):
            if not result.success:
                logger.error(
                    f"Error fetching nonce for {qop.user_operation_hash.hex()}: {result.error!r}"
                )
                continue
            if result.value == qop.nonce_value:
                available.append(qop)

        return available

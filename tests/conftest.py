from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from noncequeue.ledger import Ledger_Reader, Nonce_Read_Request, Nonce_Read_Result
from noncequeue.mempool import Mempool
from noncequeue.user_operation import User_Operation_V06, User_Operation_V07

ENTRY_POINT_V06 = to_checksum_address("0x5ff137d4b0fdcd49dca30c7cf57e578a026d2789")
ENTRY_POINT_V07 = to_checksum_address("0x0000000071727de22e5e9d8baf0edac6f37da032")
CHAIN_ID = 1


def address(n: int) -> str:
    return to_checksum_address("0x" + f"{n:040x}")


def make_op_v06(sender: str, nonce: int, call_data: bytes = b"\x01", signature: bytes = b"\x00" * 65) -> User_Operation_V06:
    return User_Operation_V06(
        sender=sender,
        nonce=nonce,
        init_code=HexBytes(b""),
        call_data=HexBytes(call_data),
        call_gas_limit=100_000,
        verification_gas_limit=200_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=30 * 10**9,
        max_priority_fee_per_gas=10**9,
        paymaster_and_data=HexBytes(b""),
        signature=HexBytes(signature),
    )


def make_op_v07(sender: str, nonce: int, paymaster: Optional[str] = None) -> User_Operation_V07:
    return User_Operation_V07(
        sender=sender,
        nonce=nonce,
        factory=None,
        factory_data=HexBytes(b""),
        call_data=HexBytes(b"\x02"),
        call_gas_limit=100_000,
        verification_gas_limit=200_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=30 * 10**9,
        max_priority_fee_per_gas=10**9,
        paymaster=paymaster,
        paymaster_verification_gas_limit=60_000 if paymaster else 0,
        paymaster_post_op_gas_limit=10_000 if paymaster else 0,
        paymaster_data=HexBytes(b""),
        signature=HexBytes(b"\x00" * 65),
    )


class Fake_Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Fake_Ledger_Reader(Ledger_Reader):
    """On-chain nonce values keyed by (sender, key); knobs for each failure mode."""

    def __init__(self, nonces: Optional[Dict[Tuple[str, int], int]] = None):
        self.nonces: Dict[Tuple[str, int], int] = dict(nonces or {})
        self.batch_fails = False
        self.failing_senders: Set[str] = set()
        self.drop_last_result = False
        self.batch_calls: List[List[Nonce_Read_Request]] = []
        self.single_calls: List[Nonce_Read_Request] = []

    def _lookup(self, request: Nonce_Read_Request) -> int:
        if request.sender in self.failing_senders:
            raise ConnectionError(f"read failed for {request.sender}")
        return self.nonces.get((request.sender, request.nonce_key), 0)

    async def batch_read(self, requests: Sequence[Nonce_Read_Request]) -> List[Nonce_Read_Result]:
        self.batch_calls.append(list(requests))
        if self.batch_fails:
            raise ConnectionError("multicall unavailable")
        results = []
        for request in requests:
            try:
                results.append(Nonce_Read_Result.ok(self._lookup(request)))
            except ConnectionError as e:
                results.append(Nonce_Read_Result.failure(e))
        if self.drop_last_result:
            results = results[:-1]
        return results

    async def single_read(self, request: Nonce_Read_Request) -> int:
        self.single_calls.append(request)
        return self._lookup(request)


class Recording_Mempool(Mempool):
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.added: List[Tuple[object, str]] = []

    def add(self, mempool_user_operation, entry_point: str) -> bool:
        self.added.append((mempool_user_operation, entry_point))
        return self.accept


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> Fake_Clock:
    return Fake_Clock()


@pytest.fixture
def ledger() -> Fake_Ledger_Reader:
    return Fake_Ledger_Reader()


@pytest.fixture
def mempool() -> Recording_Mempool:
    return Recording_Mempool()

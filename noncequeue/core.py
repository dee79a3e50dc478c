import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
import async_timeout
from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3

from noncequeue.abi_registry import ABI_Registry
from noncequeue.configuration import Configuration
from noncequeue.constants import ERROR_CORE_INIT, ERROR_WEB3_INIT, get_error_message
from noncequeue.errors import Nonce_Queue_Error, User_Operation_Error
from noncequeue.ledger import Entry_Point_Nonce_Reader
from noncequeue.logger import configure_logging
from noncequeue.mempool import Memory_Mempool
from noncequeue.nonce_queue import Nonce_Queuer, Queued_User_Operation
from noncequeue.user_operation import Mempool_User_Operation

logger = logging.getLogger(__name__)


class Main_Core:
    """
    Builds the nonce queue service: connects to the node, loads ABIs, wires the
    ledger reader, mempool and queuer, and runs until asked to stop.
    """
    WEB3_MAX_RETRIES: int = 3
    WEB3_RETRY_DELAY: int = 2

    def __init__(self, configuration: Configuration) -> None:
        self.configuration = configuration
        self.web3: Optional[AsyncWeb3] = None
        self.chain_id: Optional[int] = None
        self.running: bool = False
        self._stop_event = asyncio.Event()
        self.components: Dict[str, Any] = {
            'abi_registry': None,
            'ledger_reader': None,
            'mempool': None,
            'nonce_queuer': None,
        }

    async def initialize(self) -> None:
        """Initialize all components in dependency order."""
        try:
            await self.configuration.load()
            configure_logging(self.configuration.LOG_LEVEL)

            self.web3 = await self._initialize_web3()
            if not self.web3:
                raise Nonce_Queue_Error(get_error_message(ERROR_WEB3_INIT))
            self.chain_id = self.configuration.CHAIN_ID or await self.web3.eth.chain_id

            abi_registry = ABI_Registry()
            await abi_registry.initialize()
            self.components['abi_registry'] = abi_registry

            self.components['ledger_reader'] = Entry_Point_Nonce_Reader(
                self.web3,
                entry_point_abi=abi_registry.get_abi('entry_point'),
                multicall3_abi=abi_registry.get_abi('multicall3'),
                multicall_address=self.configuration.MULTICALL3_ADDRESS,
            )
            self.components['mempool'] = Memory_Mempool(
                self.chain_id, dedup_ttl=self.configuration.MEMPOOL_DEDUP_TTL
            )
            self.components['nonce_queuer'] = Nonce_Queuer(
                self.components['mempool'],
                self.components['ledger_reader'],
                self.chain_id,
                interval=self.configuration.NONCE_QUEUE_INTERVAL,
                ttl=self.configuration.NONCE_QUEUE_TTL,
            )
            logger.info(f"All components initialized on chain {self.chain_id} ✅")
        except Exception as e:
            logger.critical(f"{get_error_message(ERROR_CORE_INIT)}: {e}")
            raise

    async def _initialize_web3(self) -> Optional[AsyncWeb3]:
        """Initialize Web3 connection with retries."""
        provider = AsyncHTTPProvider(
            self.configuration.HTTP_ENDPOINT,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.configuration.RPC_TIMEOUT)},
        )
        for attempt in range(self.WEB3_MAX_RETRIES):
            try:
                web3 = AsyncWeb3(provider)
                async with async_timeout.timeout(self.configuration.RPC_TIMEOUT):
                    if await web3.is_connected():
                        logger.info("Linked to network via HTTP Provider. ✅")
                        return web3
                logger.warning(f"HTTP Provider not connected (attempt {attempt + 1})")
            except asyncio.TimeoutError:
                logger.warning(f"Connection timeout with HTTP Provider (attempt {attempt + 1})")
            except Exception as e:
                logger.warning(f"HTTP Provider connection attempt {attempt + 1} failed: {e}")
            if attempt < self.WEB3_MAX_RETRIES - 1:
                await asyncio.sleep(self.WEB3_RETRY_DELAY * (attempt + 1))

        logger.error("Failed to initialize Web3 ❌")
        return None

    def add_user_operation(
        self, mempool_user_operation: Mempool_User_Operation, entry_point: str
    ) -> Queued_User_Operation:
        """Queue an operation whose nonce is not yet current."""
        supported = self.configuration.ENTRY_POINTS
        if supported:
            try:
                checksummed = to_checksum_address(entry_point)
            except (TypeError, ValueError) as e:
                raise User_Operation_Error(f"Invalid entry point address: {entry_point!r}") from e
            if checksummed not in supported:
                raise User_Operation_Error(f"Unsupported entry point: {entry_point}")
        return self.components['nonce_queuer'].add(mempool_user_operation, entry_point)

    def request_stop(self) -> None:
        """Ask run() to return; shutdown itself happens in run()."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run the nonce queue until stop() is called."""
        queuer: Nonce_Queuer = self.components['nonce_queuer']
        if not queuer:
            raise RuntimeError("Nonce queuer not properly initialized")

        self.running = True
        await queuer.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Gracefully stop all components."""
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        logger.warning("Shutting down Core...")

        queuer = self.components.get('nonce_queuer')
        if queuer:
            try:
                await queuer.stop()
            except Exception as e:
                logger.error(f"Error stopping nonce_queuer: {e}")

        if self.web3 and hasattr(self.web3.provider, 'disconnect'):
            try:
                await self.web3.provider.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting provider: {e}")

        logger.debug("Core shutdown complete.")

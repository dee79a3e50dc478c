import logging
import os
from typing import Any, List, Optional

import dotenv
from eth_utils import is_address, to_checksum_address

from noncequeue.constants import (
    DEFAULT_MEMPOOL_DEDUP_TTL,
    DEFAULT_PROCESS_INTERVAL,
    DEFAULT_QUEUE_TTL,
    DEFAULT_RPC_TIMEOUT,
    MULTICALL3_ADDRESS,
)
from noncequeue.errors import Configuration_Error

logger = logging.getLogger(__name__)


class Configuration:
    """
    Loads configuration from environment variables, reading a ``.env`` file first if present.
    """

    def __init__(self, env_file: Optional[str] = None):
        """Initialize configuration attributes with None values."""
        self.env_file = env_file
        self.HTTP_ENDPOINT: Optional[str] = None
        self.CHAIN_ID: Optional[int] = None
        self.ENTRY_POINTS: List[str] = []
        self.MULTICALL3_ADDRESS: str = MULTICALL3_ADDRESS
        self.NONCE_QUEUE_INTERVAL: float = DEFAULT_PROCESS_INTERVAL
        self.NONCE_QUEUE_TTL: float = DEFAULT_QUEUE_TTL
        self.RPC_TIMEOUT: float = DEFAULT_RPC_TIMEOUT
        self.MEMPOOL_DEDUP_TTL: int = DEFAULT_MEMPOOL_DEDUP_TTL
        self.LOG_LEVEL: str = "INFO"

    async def load(self) -> None:
        """Loads the configuration in the correct order."""
        try:
            logger.info("Loading configuration... ⏳")
            dotenv.load_dotenv(self.env_file or dotenv.find_dotenv(usecwd=True))
            self._load_provider()
            self._load_addresses()
            self._load_queue_settings()
            logger.info("Configuration loaded ✅")
        except Configuration_Error as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    def _load_provider(self) -> None:
        self.HTTP_ENDPOINT = self._get_env_variable("HTTP_ENDPOINT")
        chain_id = self._get_env_variable("CHAIN_ID", default="")
        self.CHAIN_ID = self._parse_number("CHAIN_ID", chain_id, int) if chain_id else None
        self.RPC_TIMEOUT = self._get_number("RPC_TIMEOUT", self.RPC_TIMEOUT, float)

    def _load_addresses(self) -> None:
        raw_entry_points = self._get_env_variable("ENTRY_POINTS", default="")
        self.ENTRY_POINTS = [
            self._parse_address("ENTRY_POINTS", value)
            for value in raw_entry_points.split(",")
            if value.strip()
        ]
        self.MULTICALL3_ADDRESS = self._parse_address(
            "MULTICALL3_ADDRESS",
            self._get_env_variable("MULTICALL3_ADDRESS", default=self.MULTICALL3_ADDRESS),
        )

    def _load_queue_settings(self) -> None:
        self.NONCE_QUEUE_INTERVAL = self._get_number("NONCE_QUEUE_INTERVAL", self.NONCE_QUEUE_INTERVAL, float)
        self.NONCE_QUEUE_TTL = self._get_number("NONCE_QUEUE_TTL", self.NONCE_QUEUE_TTL, float)
        self.MEMPOOL_DEDUP_TTL = self._get_number("MEMPOOL_DEDUP_TTL", self.MEMPOOL_DEDUP_TTL, int)
        self.LOG_LEVEL = self._get_env_variable("LOG_LEVEL", default=self.LOG_LEVEL).upper()

    def _get_env_variable(self, var_name: str, default: Optional[str] = None) -> str:
        value = os.getenv(var_name, default)
        if value is None:
            raise Configuration_Error(f"Missing environment variable: {var_name}")
        return value.strip()

    def _get_number(self, var_name: str, default: Any, cast: type) -> Any:
        value = os.getenv(var_name)
        if value is None or not value.strip():
            return default
        return self._parse_number(var_name, value, cast)

    def _parse_number(self, var_name: str, value: str, cast: type) -> Any:
        try:
            number = cast(value.strip())
        except ValueError:
            raise Configuration_Error(f"Invalid value for {var_name}: {value!r}") from None
        if number <= 0:
            raise Configuration_Error(f"{var_name} must be positive, got {value!r}")
        return number

    def _parse_address(self, var_name: str, value: str) -> str:
        value = value.strip()
        if not is_address(value):
            raise Configuration_Error(f"Invalid address in {var_name}: {value!r}")
        return to_checksum_address(value)

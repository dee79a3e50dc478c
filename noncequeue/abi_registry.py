import json
import logging

from pathlib import Path
from typing import Dict, List, Optional, Set

import aiofiles

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).parent / 'abi'


class ABI_Registry:
    """Centralized ABI registry with validation of required methods."""

    ABI_FILES: Dict[str, str] = {
        'entry_point': 'entry_point_abi.json',
        'multicall3': 'multicall3_abi.json',
    }

    REQUIRED_METHODS: Dict[str, Set[str]] = {
        'entry_point': {'getNonce'},
        'multicall3': {'aggregate3'},
    }

    def __init__(self, abi_dir: Optional[Path] = None):
        self.abi_dir: Path = abi_dir or ABI_DIR
        self.abis: Dict[str, List[Dict]] = {}
        self._initialized: bool = False

    async def initialize(self) -> None:
        """Load and validate every known ABI."""
        if self._initialized:
            logger.debug("ABI_Registry already initialized.")
            return
        for abi_type in self.ABI_FILES:
            self.abis[abi_type] = await self._load_abi_from_path(
                self.abi_dir / self.ABI_FILES[abi_type], abi_type
            )
            logger.debug(f"Loaded and validated {abi_type} ABI")
        self._initialized = True
        logger.debug("ABI_Registry initialization complete.")

    async def _load_abi_from_path(self, abi_path: Path, abi_type: str) -> List[Dict]:
        """Loads and validates the ABI from a given path."""
        if not abi_path.exists():
            logger.error(f"ABI file not found: {abi_path}")
            raise FileNotFoundError(f"ABI file not found: {abi_path}")

        async with aiofiles.open(abi_path, 'r', encoding='utf-8') as f:
            abi = json.loads(await f.read())

        if not self._validate_abi(abi, abi_type):
            raise ValueError(f"Validation failed for {abi_type} ABI from file {abi_path}")
        return abi

    def _validate_abi(self, abi: List[Dict], abi_type: str) -> bool:
        """Validate ABI structure and required methods."""
        if not isinstance(abi, list):
            logger.error(f"Invalid ABI format for {abi_type}")
            return False

        found_methods = {
            item.get('name') for item in abi
            if item.get('type') == 'function' and 'name' in item
        }

        required = self.REQUIRED_METHODS.get(abi_type, set())
        if not required.issubset(found_methods):
            logger.error(f"Missing required methods in {abi_type} ABI: {required - found_methods}")
            return False
        return True

    def get_abi(self, abi_type: str) -> List[Dict]:
        """Get validated ABI by type."""
        try:
            return self.abis[abi_type]
        except KeyError:
            raise KeyError(f"ABI not loaded: {abi_type}") from None

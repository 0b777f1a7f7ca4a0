from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ICacheStore(ABC):
    """
    Key/value store with per-entry TTL.
    A ttl_seconds <= 0 means the entry never expires.
    """

    backend_name: str = "unknown"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Returns the stored value, or None when missing or expired (expired entries are removed)."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Eagerly evicts expired entries, returning how many were removed."""
        pass

    async def close(self) -> None:
        return None

# Abstract base class for transport adapters
# Each adapter implements the interface defined in base.py

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

class CommunicationAdapter(ABC):
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def subscribe(self, topic: str, handler: Callable[[str, Any], Awaitable[None]]) -> None:
        pass

    @abstractmethod
    async def publish(self, message: Dict[str, Any]) -> None:
        pass

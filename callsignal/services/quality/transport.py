"""Media transport interface consumed by the quality monitor."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Union

from callsignal.services.quality.models import ConnectionState

StatsReport = Dict[str, Any]


class Transport(ABC):
    """Abstract handle on an established peer-to-peer media connection."""

    @property
    @abstractmethod
    def connection_state(self) -> Union[ConnectionState, str]:
        """Current connection state; values outside ``ConnectionState`` are allowed."""
        pass

    @abstractmethod
    async def get_stats(self) -> List[StatsReport]:
        """
        Query the transport statistics.

        Each report is a mapping with at least a ``type`` key, e.g.
        ``candidate-pair`` or ``inbound-rtp``. May raise on failure.
        """
        pass

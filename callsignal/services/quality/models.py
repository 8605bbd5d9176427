"""Connection quality models."""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class QualityLevel(str, Enum):
    """Discrete connection health, worst to best."""

    DISCONNECTED = "disconnected"
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        """Ordinal position, 0 for disconnected up to 4 for excellent."""
        return _RANKS[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def __str__(self) -> str:
        return self.value


_RANKS = {
    QualityLevel.DISCONNECTED: 0,
    QualityLevel.POOR: 1,
    QualityLevel.FAIR: 2,
    QualityLevel.GOOD: 3,
    QualityLevel.EXCELLENT: 4,
}


class ConnectionState(str, Enum):
    """Transport connection states."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class QualitySnapshot(BaseModel):
    """Point-in-time classification of connection health."""

    model_config = ConfigDict(frozen=True)

    level: QualityLevel
    label: str
    bars: int = Field(ge=0, le=4)
    rtt: float = 0.0  # ms
    packet_loss: float = 0.0  # percent
    jitter: float = 0.0  # ms


class TransportMetrics(BaseModel):
    """Numbers pulled out of one stats snapshot."""

    rtt: float = 0.0
    jitter: float = 0.0
    packets_received: int = 0
    packets_lost: int = 0
    bytes_received: int = 0


DISCONNECTED_SNAPSHOT = QualitySnapshot(
    level=QualityLevel.DISCONNECTED,
    label=QualityLevel.DISCONNECTED.label,
    bars=0,
)

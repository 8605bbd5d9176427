"""Stats extraction and quality classification."""
from typing import Iterable, Union

from callsignal.services.quality.models import (
    ConnectionState,
    QualityLevel,
    QualitySnapshot,
    TransportMetrics,
)
from callsignal.services.quality.transport import StatsReport

# (level, bars, rtt ms, loss %, jitter ms); bounds are exclusive, checked best first.
THRESHOLDS = [
    (QualityLevel.EXCELLENT, 4, 100.0, 1.0, 20.0),
    (QualityLevel.GOOD, 3, 200.0, 3.0, 50.0),
    (QualityLevel.FAIR, 2, 400.0, 8.0, 100.0),
]

_DOWN_STATES = {ConnectionState.DISCONNECTED.value, ConnectionState.FAILED.value}


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def extract_metrics(reports: Iterable[StatsReport]) -> TransportMetrics:
    """Pull rtt, jitter and audio reception counters out of stat reports."""
    metrics = TransportMetrics()
    for report in reports:
        report_type = report.get("type")
        if report_type == "candidate-pair" and report.get("state") == "succeeded":
            metrics.rtt = _number(report.get("currentRoundTripTime")) * 1000
        elif report_type == "inbound-rtp" and report.get("kind") == "audio":
            metrics.jitter = _number(report.get("jitter")) * 1000
            metrics.packets_received = int(_number(report.get("packetsReceived")))
            metrics.packets_lost = int(_number(report.get("packetsLost")))
            metrics.bytes_received = int(_number(report.get("bytesReceived")))
    return metrics


def packet_loss_percent(received: int, lost: int) -> float:
    """Lost packets as a percentage of all packets; 0 when nothing was counted."""
    total = received + lost
    if total <= 0:
        return 0.0
    return lost / total * 100


def classify(
    rtt: float,
    packet_loss: float,
    jitter: float,
    connection_state: Union[ConnectionState, str],
) -> QualitySnapshot:
    """
    Classify connection health. A down transport wins over any numbers.

    States other than disconnected and failed (including ones this package
    does not name, such as ``checking``) are classified from the numbers.
    """
    if getattr(connection_state, "value", connection_state) in _DOWN_STATES:
        level, bars = QualityLevel.DISCONNECTED, 0
    else:
        level, bars = QualityLevel.POOR, 1
        for candidate, candidate_bars, max_rtt, max_loss, max_jitter in THRESHOLDS:
            if rtt < max_rtt and packet_loss < max_loss and jitter < max_jitter:
                level, bars = candidate, candidate_bars
                break

    return QualitySnapshot(
        level=level,
        label=level.label,
        bars=bars,
        rtt=rtt,
        packet_loss=packet_loss,
        jitter=jitter,
    )

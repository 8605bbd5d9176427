"""Unit tests for connection quality classification and monitoring."""
import asyncio
import pytest

from callsignal.services.quality.classifier import classify, extract_metrics, packet_loss_percent
from callsignal.services.quality.models import ConnectionState, QualityLevel
from callsignal.services.quality.monitor import ConnectionQualityMonitor


class TestClassify:
    """Test the threshold table."""

    @pytest.mark.parametrize(
        "rtt,loss,jitter,expected,bars",
        [
            (50, 0.5, 10, QualityLevel.EXCELLENT, 4),
            (150, 2, 30, QualityLevel.GOOD, 3),
            (300, 5, 80, QualityLevel.FAIR, 2),
            (500, 0, 0, QualityLevel.POOR, 1),
            (50, 10, 10, QualityLevel.POOR, 1),
        ],
    )
    def test_levels(self, rtt, loss, jitter, expected, bars):
        """Test each level of the table."""
        snapshot = classify(rtt, loss, jitter, ConnectionState.CONNECTED)

        assert snapshot.level == expected
        assert snapshot.bars == bars
        assert snapshot.label == expected.value.capitalize()

    def test_bounds_are_exclusive(self):
        """Test that a metric exactly on a bound drops a level."""
        snapshot = classify(100, 1, 20, ConnectionState.CONNECTED)

        assert snapshot.level == QualityLevel.GOOD
        assert snapshot.bars == 3

    def test_worst_metric_decides(self):
        """Test that one bad metric caps the level."""
        assert classify(10, 0, 60, ConnectionState.CONNECTED).level == QualityLevel.FAIR

    @pytest.mark.parametrize("state", [ConnectionState.FAILED, ConnectionState.DISCONNECTED, "failed"])
    def test_down_transport_overrides_numbers(self, state):
        """Test that a failed or disconnected transport is always disconnected."""
        snapshot = classify(10, 0, 1, state)

        assert snapshot.level == QualityLevel.DISCONNECTED
        assert snapshot.bars == 0
        assert snapshot.label == "Disconnected"

    @pytest.mark.parametrize("state", ["checking", "new", ConnectionState.CLOSED])
    def test_other_states_use_numbers(self, state):
        """Test that states other than disconnected and failed classify from the metrics."""
        snapshot = classify(50, 0.5, 10, state)

        assert snapshot.level == QualityLevel.EXCELLENT
        assert snapshot.bars == 4

    def test_deterministic(self):
        """Test that equal inputs give equal snapshots."""
        first = classify(120, 1.5, 25, ConnectionState.CONNECTING)
        second = classify(120, 1.5, 25, ConnectionState.CONNECTING)

        assert first == second
        assert first.rtt == 120
        assert first.packet_loss == 1.5
        assert first.jitter == 25

    def test_level_rank(self):
        ranks = [level.rank for level in QualityLevel]
        assert ranks == [0, 1, 2, 3, 4]


class TestExtractMetrics:
    """Test stat report parsing."""

    def test_uses_succeeded_pair_and_audio_stream(self, make_stats):
        """Test that only the succeeded pair and the audio stream are read."""
        metrics = extract_metrics(make_stats(rtt_s=0.12, jitter_s=0.015, received=990, lost=10))

        assert metrics.rtt == pytest.approx(120)
        assert metrics.jitter == pytest.approx(15)
        assert metrics.packets_received == 990
        assert metrics.packets_lost == 10

    def test_missing_reports_default_to_zero(self):
        metrics = extract_metrics([{"type": "transport"}])

        assert metrics.rtt == 0
        assert metrics.jitter == 0
        assert metrics.packets_received == 0

    def test_packet_loss(self):
        """Test loss percentage including the zero-packet case."""
        assert packet_loss_percent(990, 10) == pytest.approx(1.0)
        assert packet_loss_percent(0, 0) == 0.0


class TestConnectionQualityMonitor:
    """Test sampling and polling lifecycle."""

    @pytest.mark.asyncio
    async def test_sample_publishes_snapshot(self, make_transport, make_stats):
        """Test that a sample classifies and notifies listeners."""
        monitor = ConnectionQualityMonitor(interval=60)
        transport = make_transport(make_stats(rtt_s=0.05, jitter_s=0.005, received=1000, lost=0))
        seen = []
        monitor.add_listener(seen.append)
        monitor.set_transport(transport)

        snapshot = await monitor.sample()

        assert snapshot.level == QualityLevel.EXCELLENT
        assert monitor.snapshot == snapshot
        assert seen == [snapshot]
        monitor.close()

    @pytest.mark.asyncio
    async def test_failed_query_keeps_previous_snapshot(self, make_transport, make_stats):
        """Test that a stats failure leaves the last snapshot untouched."""
        monitor = ConnectionQualityMonitor(interval=60)
        transport = make_transport(make_stats(rtt_s=0.15, jitter_s=0.03, received=980, lost=20))
        monitor.set_transport(transport)
        before = await monitor.sample()

        transport.error = RuntimeError("peer connection gone")
        after = await monitor.sample()

        assert after is before
        assert monitor.snapshot is before
        assert monitor.snapshot.level == QualityLevel.GOOD
        monitor.close()

    @pytest.mark.asyncio
    async def test_failed_transport_state_reports_disconnected(self, make_transport, make_stats):
        """Test that good numbers on a failed transport still read disconnected."""
        monitor = ConnectionQualityMonitor(interval=60)
        monitor.set_transport(make_transport(make_stats(), state=ConnectionState.FAILED))

        snapshot = await monitor.sample()

        assert snapshot.level == QualityLevel.DISCONNECTED
        assert snapshot.bars == 0
        monitor.close()

    @pytest.mark.asyncio
    async def test_polls_only_when_enabled_with_transport(self, fake_transport):
        """Test that polling needs both a transport and enablement."""
        monitor = ConnectionQualityMonitor(interval=0.01)

        monitor.enable()
        assert not monitor.is_polling

        monitor.set_transport(fake_transport)
        assert monitor.is_polling
        await asyncio.sleep(0.05)
        assert fake_transport.calls >= 2

        monitor.disable()
        assert not monitor.is_polling
        calls = fake_transport.calls
        await asyncio.sleep(0.03)
        assert fake_transport.calls == calls
        monitor.close()

    @pytest.mark.asyncio
    async def test_detaching_transport_stops_polling(self, fake_transport):
        """Test that a missing transport stops polling."""
        monitor = ConnectionQualityMonitor(interval=0.01)
        monitor.set_transport(fake_transport)
        monitor.enable()
        assert monitor.is_polling

        monitor.set_transport(None)

        assert not monitor.is_polling
        monitor.close()

    @pytest.mark.asyncio
    async def test_close_stops_polling_for_good(self, fake_transport):
        """Test that close cannot be undone by enable."""
        monitor = ConnectionQualityMonitor(interval=0.01)
        monitor.set_transport(fake_transport)
        monitor.enable()

        monitor.close()
        monitor.close()
        monitor.enable()

        assert not monitor.is_polling
        assert await monitor.sample(fake_transport) == monitor.snapshot

    @pytest.mark.asyncio
    async def test_bitrate_from_byte_counter(self, make_transport, make_stats):
        """Test receive bitrate between two samples."""
        now = [0.0]
        monitor = ConnectionQualityMonitor(interval=60, clock=lambda: now[0])
        transport = make_transport(make_stats(bytes_received=0))
        monitor.set_transport(transport)
        await monitor.sample()

        now[0] = 2.0
        transport.reports = make_stats(bytes_received=16000)
        await monitor.sample()

        # 16000 bytes over 2000 ms
        assert monitor.bitrate_kbps == pytest.approx(64.0)
        monitor.close()

    @pytest.mark.asyncio
    async def test_unlisted_state_keeps_polling(self, make_transport, make_stats):
        """Test that a transport state outside the known set neither errors nor stops polling."""
        monitor = ConnectionQualityMonitor(interval=0.01)
        transport = make_transport(make_stats(), state="checking")
        monitor.set_transport(transport)
        monitor.enable()
        await asyncio.sleep(0.03)

        assert monitor.snapshot.level == QualityLevel.EXCELLENT

        transport.state = ConnectionState.FAILED
        await asyncio.sleep(0.03)
        assert monitor.snapshot.level == QualityLevel.DISCONNECTED

        transport.state = ConnectionState.CONNECTED
        calls = transport.calls
        await asyncio.sleep(0.03)
        assert transport.calls > calls
        assert monitor.snapshot.level == QualityLevel.EXCELLENT
        monitor.close()

    @pytest.mark.asyncio
    async def test_failing_sample_does_not_end_polling(self, make_transport, make_stats):
        """Test that an unexpected error in one tick is logged and polling continues."""

        class FlakyStateTransport(make_transport):
            failures = 1

            @property
            def connection_state(self):
                if self.failures:
                    self.failures -= 1
                    raise RuntimeError("state unavailable")
                return ConnectionState.CONNECTED

        monitor = ConnectionQualityMonitor(interval=0.01)
        transport = FlakyStateTransport(make_stats())
        monitor.set_transport(transport)
        monitor.enable()
        await asyncio.sleep(0.05)

        assert monitor.is_polling
        assert transport.calls >= 2
        assert monitor.snapshot.level == QualityLevel.EXCELLENT
        monitor.close()

    @pytest.mark.asyncio
    async def test_sample_from_replaced_transport_is_discarded(self, make_transport, make_stats):
        """Test that stats arriving after the handle changed do not publish."""
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowTransport(make_transport):
            async def get_stats(self):
                started.set()
                await release.wait()
                return await super().get_stats()

        monitor = ConnectionQualityMonitor(interval=60)
        seen = []
        monitor.add_listener(seen.append)
        old = SlowTransport(make_stats(rtt_s=0.5, jitter_s=0.2, received=500, lost=500))
        monitor.set_transport(old)

        in_flight = asyncio.create_task(monitor.sample())
        await started.wait()
        monitor.set_transport(make_transport(make_stats()))
        release.set()
        result = await in_flight

        assert result.level == QualityLevel.DISCONNECTED
        assert monitor.snapshot.level == QualityLevel.DISCONNECTED
        assert seen == []
        monitor.close()

# ==============================================
# Tests for Progress Reporting
# ==============================================

from tablebridge.progress import (
    ChannelProgressSink,
    FanOutProgressSink,
    ProgressEvent,
    ProgressTracker,
)

from tests.conftest import FailingSink


def event(n):
    return ProgressEvent(session_id="s1", table="t", records_processed=n, total_records=10, status="RUNNING")


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestChannelProgressSink:

    def test_events_in_order(self):
        sink = ChannelProgressSink()
        for n in range(3):
            sink.publish(event(n))
        assert [e.records_processed for e in sink.drain()] == [0, 1, 2]

    def test_full_channel_drops_oldest(self):
        sink = ChannelProgressSink(maxsize=2)
        for n in range(5):
            sink.publish(event(n))
        assert [e.records_processed for e in sink.drain()] == [3, 4]

    def test_events_iterator_stops_on_timeout(self):
        sink = ChannelProgressSink()
        sink.publish(event(1))
        assert [e.records_processed for e in sink.events(timeout=0.01)] == [1]


class TestFanOutProgressSink:

    def test_failing_sink_does_not_stop_others(self):
        failing = FailingSink()
        channel = ChannelProgressSink()
        FanOutProgressSink([failing, channel]).publish(event(7))
        assert failing.attempts == 1
        assert channel.drain()[0].records_processed == 7


class TestProgressTracker:

    def test_rate_and_eta(self):
        clock = FakeClock()
        tracker = ProgressTracker(expected_total=100, clock=clock)
        tracker.advance(20)
        clock.now += 10
        assert tracker.records_per_second == 2.0
        assert tracker.eta_seconds == 40.0

    def test_unknown_total_has_no_eta(self):
        clock = FakeClock()
        tracker = ProgressTracker(clock=clock)
        tracker.advance(5)
        clock.now += 1
        assert tracker.eta_seconds is None

    def test_event_dict(self):
        data = event(3).to_dict()
        assert data["session_id"] == "s1"
        assert data["eta_seconds"] is None

"""Tests for index refresh throttling."""

from jira_mcp_server.index_scheduler import DEFAULT_REFRESH_INTERVAL, RefreshScheduler


class TestRefreshScheduler:
    """Fresh/stale decisions with a fake clock."""

    def test_default_interval(self):
        assert DEFAULT_REFRESH_INTERVAL == 600
        assert RefreshScheduler().interval == 600

    def test_never_updated_is_due(self, clock):
        scheduler = RefreshScheduler(interval=600, clock=clock)
        assert scheduler.last_update is None
        assert scheduler.should_update_index()
        assert scheduler.get_time_to_next_update() == 0

    def test_fresh_after_update(self, clock):
        scheduler = RefreshScheduler(interval=600, clock=clock)
        scheduler.mark_updated()
        assert not scheduler.should_update_index()
        assert scheduler.get_time_to_next_update() == 600

    def test_time_to_next_update_rounds_up(self, clock):
        scheduler = RefreshScheduler(interval=600, clock=clock)
        scheduler.mark_updated()
        clock.advance(100.5)
        assert scheduler.get_time_to_next_update() == 500

    def test_due_at_interval(self, clock):
        scheduler = RefreshScheduler(interval=600, clock=clock)
        scheduler.mark_updated()
        clock.advance(599)
        assert not scheduler.should_update_index()
        clock.advance(1)
        assert scheduler.should_update_index()
        assert scheduler.get_time_to_next_update() == 0

    def test_mark_updated_resets(self, clock):
        scheduler = RefreshScheduler(interval=60, clock=clock)
        scheduler.mark_updated()
        clock.advance(120)
        scheduler.mark_updated()
        assert scheduler.last_update == clock.now
        assert not scheduler.should_update_index()

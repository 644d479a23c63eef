"""
Tests for rtcprobe.stats.exporter module.
"""

import pytest

from rtcprobe.core.config import Config
from rtcprobe.stats.exporter import Exporter
from rtcprobe.stats.models import CustomEvent, Direction, EventCategory, MediaKind, Report


@pytest.fixture
def exporter(sample_config):
    """Create an exporter over the sample configuration."""
    return Exporter(Config.from_dict(sample_config), probe_id="coltr-test")


def scored_report(count, mos_in):
    report = Report.initial("pc-main", "call-42", "alice")
    report.count = count
    stream = report.ensure_stream(MediaKind.AUDIO, "1111", Direction.INBOUND)
    stream.values["mos_in"] = mos_in
    stream.values["mos_emodel_in"] = mos_in + 0.1
    return report


class TestExporterHistory:
    """Tests for report history."""

    def test_initial_state(self, exporter):
        """Test an empty history."""
        assert exporter.get_reports_number() == 0
        assert exporter.get_last_report() is None
        assert exporter.get_before_last_report() is None
        assert exporter.get_reference_report() is None
        assert exporter.started is None

    def test_last_and_before_last(self, exporter):
        """Test the two most recent reports are tracked."""
        reports = [scored_report(i, 4.0) for i in (1, 2, 3)]
        for report in reports:
            exporter.add_report(report)

        assert exporter.get_reports_number() == 3
        assert exporter.get_last_report() is reports[2]
        assert exporter.get_before_last_report() is reports[1]
        assert [r.count for r in exporter.reports] == [1, 2, 3]

    def test_reference_not_in_history(self, exporter):
        """Test the reference report is kept apart."""
        reference = Report()
        exporter.save_reference_report(reference)
        assert exporter.get_reference_report() is reference
        assert exporter.get_reports_number() == 0

    def test_reports_copy(self, exporter):
        """Test the report list cannot be modified from outside."""
        exporter.add_report(Report())
        exporter.reports.clear()
        assert exporter.get_reports_number() == 1

    def test_reset(self, exporter):
        """Test reset forgets the previous session."""
        exporter.start()
        exporter.save_reference_report(Report())
        exporter.add_report(Report())
        exporter.add_custom_event(CustomEvent(1.0, EventCategory.CALL, "x", "desc"))

        exporter.reset()

        assert exporter.get_reports_number() == 0
        assert exporter.events == []
        assert exporter.get_reference_report() is None
        assert exporter.get_last_report() is None
        assert exporter.started is None


class TestExporterTicket:
    """Tests for ticket generation."""

    def test_ticket_identity(self, exporter):
        """Test the ticket carries the session identity."""
        started = exporter.start()
        ticket = exporter.stop()
        assert ticket.session_name == "pc-main"
        assert ticket.call_id == "call-42"
        assert ticket.user_id == "alice"
        assert ticket.probe_id == "coltr-test"
        assert ticket.started == started
        assert ticket.ended >= started

    def test_ticket_content(self, exporter):
        """Test the ticket lists reports and events in order."""
        exporter.start()
        exporter.add_report(scored_report(1, 4.0))
        exporter.add_report(scored_report(2, 3.0))
        exporter.add_custom_event(CustomEvent(1.0, EventCategory.QUALITY, "a", "first"))
        exporter.add_custom_event(CustomEvent(2.0, "app", "b", "second"))

        ticket = exporter.stop()

        assert [r.count for r in ticket.reports] == [1, 2]
        assert [e.name for e in ticket.events] == ["a", "b"]

    def test_ticket_independent_of_reset(self, exporter):
        """Test a ticket survives the exporter being reset."""
        exporter.start()
        exporter.add_report(scored_report(1, 4.0))
        ticket = exporter.stop()
        exporter.reset()
        assert len(ticket.reports) == 1

    def test_summary(self, exporter):
        """Test the ticket summary."""
        exporter.start()
        exporter.add_report(scored_report(1, 4.0))
        exporter.add_report(scored_report(2, 3.0))
        exporter.add_custom_event(CustomEvent(1.0, EventCategory.QUALITY, "a", "first"))
        exporter.add_custom_event(CustomEvent(2.0, EventCategory.QUALITY, "b", "second"))
        exporter.add_custom_event(CustomEvent(3.0, "app", "c", "third"))

        summary = exporter.stop().summary

        assert summary["reports"] == 2
        assert summary["events"] == {"quality": 2, "app": 1}
        assert summary["audio_mos_in"] == {"min": 3.0, "avg": 3.5, "max": 4.0}
        assert summary["audio_mos_emodel_in"]["max"] == pytest.approx(4.1)

    def test_empty_summary(self, exporter):
        """Test a session stopped before any report."""
        ticket = exporter.stop()
        assert ticket.started is None
        assert ticket.summary == {"reports": 0, "events": {}}

    def test_update_config(self, exporter):
        """Test the ticket follows configuration updates."""
        config = Config()
        config.session.call_id = "call-99"
        exporter.update_config(config)
        assert exporter.stop().call_id == "call-99"

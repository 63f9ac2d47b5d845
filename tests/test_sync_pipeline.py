"""Unit tests for CalendarSyncPipeline."""
import logging
from unittest.mock import Mock

import pytest

from conftest import make_event
from processor.errors import FetchError, ParseError, StoreError
from processor.models import RunOutcome, RunState, WriteResult
from processor.sync_pipeline import CalendarSyncPipeline
from scraper.page_parser import DailyFXPageParser


def make_store(name, existing=None, results=None):
    """Create a mock store returning the given events and write results."""
    store = Mock()
    store.name = name
    store.get_in_range.return_value = existing or []
    if results is None:
        store.add_or_update.return_value = WriteResult(True)
    else:
        store.add_or_update.side_effect = results
    return store


@pytest.fixture
def scraper(calendar_html):
    scraper = Mock()
    scraper.fetch_page.return_value = calendar_html
    return scraper


class TestCalendarSyncPipeline:
    """Test cases for CalendarSyncPipeline class."""

    def test_first_run_adds_all_events(self, scraper):
        """Test that an empty store gets every parsed event."""
        backend = make_store('backend')
        influx = make_store('influxdb')
        pipeline = CalendarSyncPipeline(
            scraper, DailyFXPageParser(), [backend], destinations=[influx]
        )

        result = pipeline.run()

        assert result.outcome is RunOutcome.SUCCESS
        assert result.state is RunState.DONE
        assert pipeline.state is RunState.DONE
        assert result.events_parsed == 2
        assert result.events_added == 2
        assert result.events_updated == 0
        assert backend.add_or_update.call_count == 2
        assert influx.add_or_update.call_count == 2
        assert result.destinations['backend'].to_dict() == {'success': 2, 'failed': 0}
        assert result.destinations['influxdb'].to_dict() == {'success': 2, 'failed': 0}
        assert result.errors == []

    def test_queries_store_with_batch_range(self, scraper, calendar_html):
        """Test that the store is read once for the min/max scraped timestamps."""
        backend = make_store('backend')
        pipeline = CalendarSyncPipeline(scraper, DailyFXPageParser(), [backend])

        pipeline.run()

        events = DailyFXPageParser().parse(calendar_html)
        backend.get_in_range.assert_called_once_with(
            events[0].timestamp, events[1].timestamp
        )

    def test_no_extra_destinations_by_default(self, scraper):
        backend = make_store('backend')

        pipeline = CalendarSyncPipeline(scraper, DailyFXPageParser(), [backend])

        assert pipeline.backends == [backend]
        assert pipeline.destinations == []

    def test_only_new_and_updated_events_are_written(self):
        """Test that unchanged events produce no writes."""
        nfp = make_event(actual='200K')
        cpi = make_event(title='CPI')
        gdp = make_event(title='GDP')
        parser = Mock()
        parser.parse.return_value = [nfp, cpi, gdp]
        backend = make_store('backend', existing=[make_event(actual='190K'), make_event(title='CPI')])
        pipeline = CalendarSyncPipeline(Mock(), parser, [backend])

        result = pipeline.run()

        assert result.events_added == 1
        assert result.events_updated == 1
        assert result.events_unchanged == 1
        written = [call.args[0] for call in backend.add_or_update.call_args_list]
        assert [e.title for e in written] == ['GDP', 'Non-Farm Payrolls']
        assert written[1].actual == '200K'

    def test_nothing_to_write_is_success(self):
        parser = Mock()
        parser.parse.return_value = [make_event()]
        backend = make_store('backend', existing=[make_event()])

        result = CalendarSyncPipeline(Mock(), parser, [backend]).run()

        assert result.outcome is RunOutcome.SUCCESS
        assert result.events_unchanged == 1
        backend.add_or_update.assert_not_called()

    def test_fetch_failure_aborts_run(self):
        """Test that a fetch failure stops before parsing."""
        scraper = Mock()
        scraper.fetch_page.side_effect = FetchError("Failed to load calendar page (response 503)")
        parser = Mock()
        backend = make_store('backend')

        result = CalendarSyncPipeline(scraper, parser, [backend]).run()

        assert result.outcome is RunOutcome.FAILED
        assert result.state is RunState.FETCHING
        assert 'FetchError' in result.errors[0]
        parser.parse.assert_not_called()
        backend.get_in_range.assert_not_called()

    def test_parse_failure_aborts_run(self, scraper):
        parser = Mock()
        parser.parse.side_effect = ParseError("Failed to parse calendar markup")
        backend = make_store('backend')

        result = CalendarSyncPipeline(scraper, parser, [backend]).run()

        assert result.outcome is RunOutcome.FAILED
        assert result.state is RunState.PARSING
        backend.get_in_range.assert_not_called()

    def test_empty_batch_aborts_run(self, caplog):
        """Test that a page without events is a failed run, logged as error."""
        scraper = Mock()
        scraper.fetch_page.return_value = "<html><body></body></html>"
        backend = make_store('backend')

        with caplog.at_level(logging.ERROR, logger='processor.sync_pipeline'):
            result = CalendarSyncPipeline(scraper, DailyFXPageParser(), [backend]).run()

        assert result.outcome is RunOutcome.FAILED
        assert result.state is RunState.PARSING
        assert result.events_parsed == 0
        assert 'EmptyBatchError' in result.errors[0]
        assert any('Found no event to process' in r.message for r in caplog.records)
        backend.get_in_range.assert_not_called()
        backend.add_or_update.assert_not_called()

    def test_store_read_failure_aborts_run(self, scraper):
        backend = make_store('backend')
        backend.get_in_range.side_effect = StoreError("Failed to load events from backend")
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            scraper, DailyFXPageParser(), [backend], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.FAILED
        assert result.state is RunState.RECONCILING
        influx.add_or_update.assert_not_called()

    def test_destination_failure_does_not_block_others(self, scraper):
        """Test that one failing destination leaves the other and later events alone."""
        backend = make_store('backend')
        influx = make_store('influxdb', results=[
            WriteResult(False, 'HTTP 500: boom'),
            WriteResult(True),
        ])

        result = CalendarSyncPipeline(
            scraper, DailyFXPageParser(), [backend], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.PARTIAL
        assert result.state is RunState.DONE
        assert result.destinations['backend'].to_dict() == {'success': 2, 'failed': 0}
        assert result.destinations['influxdb'].to_dict() == {'success': 1, 'failed': 1}
        assert len(result.errors) == 1
        assert 'influxdb' in result.errors[0]
        assert 'USD - Non-Farm Payrolls' in result.errors[0]
        assert 'HTTP 500: boom' in result.errors[0]

    def test_write_exception_is_counted(self, scraper):
        """Test that an exception from a destination counts as a failure."""
        backend = make_store('backend', results=[
            TimeoutError('write timed out'),
            WriteResult(True),
        ])

        result = CalendarSyncPipeline(scraper, DailyFXPageParser(), [backend]).run()

        assert result.outcome is RunOutcome.PARTIAL
        assert result.destinations['backend'].to_dict() == {'success': 1, 'failed': 1}
        assert 'TimeoutError: write timed out' in result.errors[0]

    def test_run_can_be_repeated(self, scraper):
        """Test that each run starts from fresh counters."""
        backend = make_store('backend')
        pipeline = CalendarSyncPipeline(scraper, DailyFXPageParser(), [backend])

        pipeline.run()
        result = pipeline.run()

        assert result.destinations['backend'].to_dict() == {'success': 2, 'failed': 0}


class TestMultipleBackends:
    """Test cases for runs that sync several backend environments."""

    def test_each_backend_gets_its_own_write_set(self):
        """Test that backends with different stored events get different writes."""
        nfp = make_event(actual='200K')
        cpi = make_event(title='CPI')
        parser = Mock()
        parser.parse.return_value = [nfp, cpi]
        dev = make_store('backend-dev', existing=[make_event(), make_event(title='CPI')])
        qa = make_store('backend-qa')
        prod = make_store('backend-prod', existing=[make_event(actual='190K')])
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            Mock(), parser, [dev, qa, prod], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.SUCCESS
        dev.add_or_update.assert_not_called()
        qa_written = [call.args[0] for call in qa.add_or_update.call_args_list]
        assert sorted(e.title for e in qa_written) == ['CPI', 'Non-Farm Payrolls']
        prod_written = [call.args[0] for call in prod.add_or_update.call_args_list]
        assert [e.title for e in prod_written] == ['CPI', 'Non-Farm Payrolls']
        assert prod_written[1].actual == '200K'
        assert result.plans == {
            'backend-dev': {'added': 0, 'updated': 0, 'unchanged': 2},
            'backend-qa': {'added': 2, 'updated': 0, 'unchanged': 0},
            'backend-prod': {'added': 1, 'updated': 1, 'unchanged': 0},
        }
        assert result.events_added == 3
        assert result.events_updated == 1
        assert result.events_unchanged == 2
        assert result.destinations['backend-dev'].to_dict() == {'success': 0, 'failed': 0}
        assert result.destinations['backend-qa'].to_dict() == {'success': 2, 'failed': 0}

    def test_each_backend_is_read_once(self, scraper):
        dev = make_store('backend-dev')
        qa = make_store('backend-qa')

        CalendarSyncPipeline(scraper, DailyFXPageParser(), [dev, qa]).run()

        dev.get_in_range.assert_called_once()
        qa.get_in_range.assert_called_once()

    def test_destination_gets_each_pending_event_once(self):
        """Test that a write-only store receives the union of backend writes."""
        nfp = make_event(actual='200K')
        cpi = make_event(title='CPI')
        parser = Mock()
        parser.parse.return_value = [nfp, cpi]
        dev = make_store('backend-dev', existing=[make_event(title='CPI')])
        qa = make_store('backend-qa')
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            Mock(), parser, [dev, qa], destinations=[influx]
        ).run()

        written = [call.args[0] for call in influx.add_or_update.call_args_list]
        assert sorted(e.title for e in written) == ['CPI', 'Non-Farm Payrolls']
        assert result.destinations['influxdb'].to_dict() == {'success': 2, 'failed': 0}

    def test_destination_skipped_when_every_backend_is_current(self):
        parser = Mock()
        parser.parse.return_value = [make_event()]
        dev = make_store('backend-dev', existing=[make_event()])
        qa = make_store('backend-qa', existing=[make_event()])
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            Mock(), parser, [dev, qa], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.SUCCESS
        influx.add_or_update.assert_not_called()

    def test_unreadable_backend_is_skipped(self, scraper):
        """Test that one unreadable backend leaves the others synced."""
        dev = make_store('backend-dev')
        dev.get_in_range.side_effect = StoreError("Failed to load events from backend")
        qa = make_store('backend-qa')
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            scraper, DailyFXPageParser(), [dev, qa], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.PARTIAL
        assert result.state is RunState.DONE
        dev.add_or_update.assert_not_called()
        assert qa.add_or_update.call_count == 2
        assert influx.add_or_update.call_count == 2
        assert 'backend-qa' in result.plans
        assert 'backend-dev' not in result.plans
        assert result.errors[0].startswith('backend-dev: StoreError')

    def test_every_backend_unreadable_aborts_run(self, scraper):
        dev = make_store('backend-dev')
        dev.get_in_range.side_effect = StoreError("Failed to load events from backend")
        qa = make_store('backend-qa')
        qa.get_in_range.side_effect = StoreError("Failed to load events from backend")
        influx = make_store('influxdb')

        result = CalendarSyncPipeline(
            scraper, DailyFXPageParser(), [dev, qa], destinations=[influx]
        ).run()

        assert result.outcome is RunOutcome.FAILED
        assert result.state is RunState.RECONCILING
        influx.add_or_update.assert_not_called()

"""
Tests for the ESPN status parser and the injury service.
Run with: pytest tests/test_injuries.py -v
"""

import pytest
import requests
from unittest.mock import MagicMock, patch

from backend.core.cache import TTLCache
from backend.services.injuries import (
    InjuryService,
    fetch_team_injuries,
    normalize_espn_injury,
    parse_espn_status,
)
from backend.services.reconciliation import AvailabilityStatus, StatusRecord


class TestParseStatus:
    """Raw ESPN text maps to exactly one closed status"""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Out", AvailabilityStatus.OUT),
            ("Day-To-Day", AvailabilityStatus.DAY_TO_DAY),
            ("day to day", AvailabilityStatus.DAY_TO_DAY),
            ("DTD", AvailabilityStatus.DAY_TO_DAY),
            ("Injured Reserve", AvailabilityStatus.IR),
            ("IR", AvailabilityStatus.IR),
            ("Long Term Injured Reserve", AvailabilityStatus.LTIR),
            ("Long-Term IR", AvailabilityStatus.LTIR),
            ("LTIR", AvailabilityStatus.LTIR),
            ("Suspension", AvailabilityStatus.SUSPENDED),
            ("Questionable", AvailabilityStatus.QUESTIONABLE),
            ("Active", AvailabilityStatus.ACTIVE),
            ("Probable", AvailabilityStatus.ACTIVE),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert parse_espn_status(raw) is expected

    def test_empty_is_out(self):
        assert parse_espn_status("") is AvailabilityStatus.OUT
        assert parse_espn_status(None) is AvailabilityStatus.OUT

    def test_unrecognised_is_out(self):
        assert parse_espn_status("Personal") is AvailabilityStatus.OUT

    def test_ltir_not_parsed_as_ir(self):
        assert parse_espn_status("long term injured reserve") is not AvailabilityStatus.IR

    def test_unavailable_set(self):
        assert AvailabilityStatus.DAY_TO_DAY.is_unavailable
        assert AvailabilityStatus.SUSPENDED.is_unavailable
        assert not AvailabilityStatus.QUESTIONABLE.is_unavailable
        assert not AvailabilityStatus.ACTIVE.is_unavailable


class TestNormalizeItem:

    def test_full_item(self):
        item = {
            "athlete": {"id": 8478483, "displayName": "Mitch Marner", "position": {"abbreviation": "R"}},
            "status": "Day-To-Day",
            "shortComment": "Lower body",
            "type": {"description": "Lower Body"},
        }
        rec = normalize_espn_injury(item, "TOR")
        assert rec.name == "Mitch Marner"
        assert rec.scope == "TOR"
        assert rec.position == "RW"
        assert rec.status is AvailabilityStatus.DAY_TO_DAY
        assert rec.raw_status == "Day-To-Day"
        assert rec.detail == "Lower body"
        assert rec.entity_id == "8478483"

    def test_missing_name_dropped(self):
        assert normalize_espn_injury({"athlete": {}, "status": "Out"}, "TOR") is None

    def test_missing_fields_defaulted(self):
        rec = normalize_espn_injury({"athlete": {"fullName": "A Player"}}, "BOS")
        assert rec.status is AvailabilityStatus.OUT
        assert rec.position == "F"
        assert rec.detail == "Undisclosed"


class TestFetchTeam:

    @patch("backend.services.injuries.requests.get")
    def test_parses_items(self, mock_get):
        resp = MagicMock()
        resp.json.return_value = {
            "items": [
                {"athlete": {"displayName": "Auston Matthews"}, "status": "Out"},
                {"athlete": {}, "status": "Out"},
            ]
        }
        mock_get.return_value = resp

        records = fetch_team_injuries("27", "TOR")

        assert [r.name for r in records] == ["Auston Matthews"]
        assert mock_get.call_args.kwargs["timeout"] == 10

    @patch("backend.services.injuries.requests.get")
    def test_network_error_returns_empty(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("down")
        assert fetch_team_injuries("27", "TOR") == []

    @pytest.mark.parametrize("payload", [[], None, "maintenance"])
    @patch("backend.services.injuries.requests.get")
    def test_non_object_payload_returns_empty(self, mock_get, payload):
        resp = MagicMock()
        resp.json.return_value = payload
        mock_get.return_value = resp
        assert fetch_team_injuries("27", "TOR") == []

    @patch("backend.services.injuries.requests.get")
    def test_malformed_items_skipped(self, mock_get):
        resp = MagicMock()
        resp.json.return_value = {
            "items": ["junk", None, {"athlete": "x"}, {"athlete": {"displayName": "John Tavares"}}]
        }
        mock_get.return_value = resp
        assert [r.name for r in fetch_team_injuries("27", "TOR")] == ["John Tavares"]


class TestInjuryService:

    def _service(self, feed):
        fetcher = MagicMock(return_value=feed)
        return InjuryService(TTLCache(), fetcher=fetcher), fetcher

    def test_feed_is_cached(self):
        feed = [StatusRecord("Auston Matthews", "TOR", AvailabilityStatus.OUT)]
        service, fetcher = self._service(feed)
        service.fetch_statuses()
        service.fetch_statuses()
        assert fetcher.call_count == 1

    def test_refresh_refetches(self):
        service, fetcher = self._service([])
        service.fetch_statuses()
        service.refresh()
        assert fetcher.call_count == 2

    def test_override_replaces_feed_record(self):
        feed = [StatusRecord("Auston Matthews", "TOR", AvailabilityStatus.OUT)]
        service, _ = self._service(feed)
        service.add_manual_override(StatusRecord("Auston Matthews", "TOR", AvailabilityStatus.ACTIVE))

        statuses = service.fetch_statuses()

        assert len(statuses) == 1
        assert statuses[0].status is AvailabilityStatus.ACTIVE
        assert statuses[0].source == "manual"

    def test_clear_overrides(self):
        service, _ = self._service([])
        service.add_manual_override(StatusRecord("A Player", "BOS", AvailabilityStatus.OUT))
        service.clear_manual_overrides()
        assert service.fetch_statuses() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

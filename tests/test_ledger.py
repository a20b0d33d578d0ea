"""
Tests for the remote ledger transports.
"""

import asyncio
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from progress_sync.errors import TransientRemoteError
from progress_sync.sync.ledger import HttpRemoteLedger, MemoryRemoteLedger, RemoteLedger, profile_of

from conftest import make_snapshot


def http_response(payload):
    """urlopen() stand-in returning `payload` as a JSON body."""
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode("utf-8")
    cm = MagicMock()
    cm.__enter__.return_value = resp
    return cm


class TestMemoryLedger:
    """In-process ledger with failure injection."""

    def test_satisfies_protocol(self, ledger):
        assert isinstance(ledger, RemoteLedger)

    def test_load_missing(self, ledger):
        assert asyncio.run(ledger.load_complete_player_progress("wallet1")) is None

    def test_save_then_load(self, ledger):
        asyncio.run(ledger.save_complete_player_progress("wallet1", make_snapshot(credits=9)))
        result = asyncio.run(ledger.load_complete_player_progress("wallet1"))
        assert result.snapshot.credits == 9
        assert result.stats["credits"] == 9
        assert ledger.calls == {"save": 1, "load": 1}

    def test_stored_copy_is_detached(self, ledger):
        snapshot = make_snapshot(credits=1)
        ledger.put("wallet1", snapshot)
        snapshot.credits = 2
        assert ledger.get("wallet1").credits == 1

    def test_fail_next(self, ledger):
        ledger.fail_next = 1
        with pytest.raises(TransientRemoteError):
            asyncio.run(ledger.load_complete_player_progress("wallet1"))
        assert asyncio.run(ledger.load_complete_player_progress("wallet1")) is None

    def test_sync_progress_merges(self, ledger):
        ledger.put("wallet1", make_snapshot(experience=800))
        result = asyncio.run(ledger.sync_progress("wallet1", make_snapshot(experience=500)))
        assert result.success
        assert result.synced_progress.experience == 800
        assert len(result.conflicts) == 1

    def test_profile_of(self):
        profile, stats = profile_of(make_snapshot(name="Vega", level=3, experience=2100))
        assert profile["name"] == "Vega"
        assert profile["level"] == 3
        assert stats["experience"] == 2100


class TestHttpLedger:
    """JSON over urllib, errors mapped to TransientRemoteError."""

    @pytest.fixture
    def http(self):
        return HttpRemoteLedger("http://ledger.test/api/", timeout=1.0)

    def test_url_quotes_identity(self, http):
        assert http._url("a/b", "progress") == "http://ledger.test/api/players/a%2Fb/progress"

    def test_load(self, http):
        body = {"success": True, "snapshot": make_snapshot(credits=5).model_dump(mode="json")}
        with patch("urllib.request.urlopen", return_value=http_response(body)) as urlopen:
            result = asyncio.run(http.load_complete_player_progress("wallet1"))

        assert result.snapshot.credits == 5
        request = urlopen.call_args[0][0]
        assert request.get_method() == "GET"
        assert request.full_url == "http://ledger.test/api/players/wallet1/progress"

    def test_load_not_found(self, http):
        error = urllib.error.HTTPError("http://ledger.test", 404, "Not Found", None, None)
        with patch("urllib.request.urlopen", side_effect=error):
            assert asyncio.run(http.load_complete_player_progress("wallet1")) is None

    def test_server_error_is_transient(self, http):
        error = urllib.error.HTTPError("http://ledger.test", 503, "Unavailable", None, None)
        with patch("urllib.request.urlopen", side_effect=error):
            with pytest.raises(TransientRemoteError, match="503"):
                asyncio.run(http.load_complete_player_progress("wallet1"))

    def test_unreachable_is_transient(self, http):
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(TransientRemoteError):
                asyncio.run(http.save_complete_player_progress("wallet1", make_snapshot()))

    def test_bad_json_is_transient(self, http):
        cm = MagicMock()
        cm.__enter__.return_value.read.return_value = b"<html>"
        with patch("urllib.request.urlopen", return_value=cm):
            with pytest.raises(TransientRemoteError):
                asyncio.run(http.load_complete_player_progress("wallet1"))

    def test_non_object_body_is_transient(self, http):
        with patch("urllib.request.urlopen", return_value=http_response([])):
            with pytest.raises(TransientRemoteError, match="JSON object"):
                asyncio.run(http.save_complete_player_progress("wallet1", make_snapshot()))

    def test_save_sends_snapshot(self, http):
        with patch("urllib.request.urlopen", return_value=http_response({"success": True})) as urlopen:
            assert asyncio.run(http.save_complete_player_progress("wallet1", make_snapshot(credits=3)))

        request = urlopen.call_args[0][0]
        assert request.get_method() == "PUT"
        assert json.loads(request.data)["credits"] == 3

    def test_mission_update(self, http):
        with patch("urllib.request.urlopen", return_value=http_response({})) as urlopen:
            asyncio.run(http.update_mission_progress("wallet1", "mining_001", 4))

        request = urlopen.call_args[0][0]
        assert request.full_url.endswith("/players/wallet1/missions/mining_001")
        assert json.loads(request.data) == {"progress": 4}

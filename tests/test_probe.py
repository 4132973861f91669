"""Tests for nanoauth/probe.py - gate reachability check."""

from unittest.mock import MagicMock, patch

import requests

from conftest import request
from nanoauth.auth import DEFAULT_HEADER
from nanoauth.probe import probe


class TestProbe:
    """Tests for probe function (mocked HTTP)."""

    def test_accepted(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=200)

            ok, message = probe("https://gate:8443/", "secret")

        assert ok is True
        assert "accepted" in message
        _, kwargs = mock_get.call_args
        assert kwargs["headers"] == {DEFAULT_HEADER: b"secret"}
        assert kwargs["verify"] is False

    def test_rejected(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=401)

            ok, message = probe("https://gate:8443/", "wrong")

        assert ok is False
        assert "401" in message

    def test_application_error_is_past_guard(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=404)

            ok, message = probe("https://gate:8443/missing", "secret")

        assert ok is True
        assert "404" in message

    def test_custom_header_and_no_token(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=200)

            probe("https://gate:8443/", "k", header="X-Api-Key", verify=True)
            _, kwargs = mock_get.call_args
            assert kwargs["headers"] == {"X-Api-Key": b"k"}
            assert kwargs["verify"] is True

            probe("https://gate:8443/", "")
            _, kwargs = mock_get.call_args
            assert kwargs["headers"] == {}

    def test_non_ascii_token_sent_as_utf8(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.return_value = MagicMock(status_code=200)

            ok, _ = probe("https://gate:8443/", "sécret")

        assert ok is True
        assert mock_get.call_args[1]["headers"] == {DEFAULT_HEADER: "sécret".encode("utf-8")}

    def test_unencodable_header_reported(self):
        """Header encoding failures become a failed check, not a traceback."""
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.side_effect = UnicodeEncodeError("ascii", "jeton-é", 6, 7, "ordinal not in range")

            ok, message = probe("https://gate:8443/", "secret", header="jeton-é")

        assert ok is False
        assert "Invalid token header" in message

    def test_connection_error(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("refused")

            ok, message = probe("https://gate:8443/", "secret")

        assert ok is False
        assert "Cannot connect" in message

    def test_ssl_error(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.side_effect = requests.exceptions.SSLError("bad cert")

            ok, message = probe("https://gate:8443/", "secret", verify=True)

        assert ok is False
        assert "TLS error" in message

    def test_timeout(self):
        with patch("nanoauth.probe.requests.get") as mock_get:
            mock_get.side_effect = requests.exceptions.Timeout()

            ok, message = probe("https://gate:8443/", "secret")

        assert ok is False
        assert "Timeout" in message


class TestProbeIntegration:
    """probe against a real gate."""

    def test_against_tls_gate(self, start_gate, app, certificate):
        gate = start_gate("secret", app, tls=True, certificate=certificate)

        assert probe(gate.url + "/", "secret", timeout=5)[0] is True
        assert probe(gate.url + "/", "wrong", timeout=5)[0] is False
        # Server still healthy after the probes
        assert request(gate, "/", headers={DEFAULT_HEADER: "secret"})[0] == 200

    def test_non_ascii_token_against_gate(self, start_gate, app):
        gate = start_gate("sécret", app)

        assert probe(gate.url + "/", "sécret", timeout=5) == (True, "Gate accepted token (200)")

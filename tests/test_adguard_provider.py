"""Unit tests for AdGuardProviderClient."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from dns_distributor.errors import ProviderCallFailure
from dns_distributor.models import (
    CreateOutcome,
    Provider,
    ProviderRecordSpec,
    RecordType,
)
from dns_distributor.providers import (
    ADGUARD_CAPABILITIES,
    AdGuardProviderClient,
    adguard_record_id,
    create_provider_client,
    parse_adguard_record_id,
)


def _client() -> AdGuardProviderClient:
    return AdGuardProviderClient(url="http://adguard.local", username="admin", password="secret")


def _response(data=None) -> MagicMock:
    response = MagicMock()
    response.raise_for_status = MagicMock()
    response.json.return_value = data if data is not None else []
    return response


SPEC = ProviderRecordSpec(
    provider_id="home",
    hostname="app.example.com",
    record_type=RecordType.A,
    content="10.0.0.1",
    ttl=0,
)


class TestAdGuardConnection:
    """Tests for AdGuard connection functionality."""

    def test_test_connection_success(self) -> None:
        """Test successful connection returns True."""
        provider = _client()

        with patch.object(provider._session, "get") as mock_get:
            mock_get.return_value = _response()

            assert provider.test_connection() is True
            mock_get.assert_called_once_with("http://adguard.local/control/status", timeout=5)

    def test_test_connection_failure(self) -> None:
        """Test connection failure returns False."""
        provider = _client()

        with patch.object(provider._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")

            assert provider.test_connection() is False


class TestAdGuardListRewrites:
    """Tests for listing existing rewrites."""

    def test_list_rewrites_skips_malformed_entries(self) -> None:
        provider = _client()
        data = [
            {"domain": "app.example.com", "answer": "10.0.0.1"},
            {"domain": "broken.example.com"},
            "not a dict",
            {"domain": 123, "answer": "10.0.0.2"},
        ]

        with patch.object(provider._session, "get", return_value=_response(data)):
            rewrites = provider.list_rewrites()

        assert rewrites == [{"domain": "app.example.com", "answer": "10.0.0.1"}]

    def test_list_rewrites_raises_on_transport_error(self) -> None:
        provider = _client()

        with patch.object(provider._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.Timeout("timed out")

            with pytest.raises(ProviderCallFailure):
                provider.list_rewrites()

    def test_list_rewrites_raises_on_invalid_json(self) -> None:
        provider = _client()
        response = _response()
        response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)

        with patch.object(provider._session, "get", return_value=response):
            with pytest.raises(ProviderCallFailure):
                provider.list_rewrites()


class TestAdGuardCreate:
    """Tests for creating rewrites."""

    def test_create_success(self) -> None:
        provider = _client()

        with patch.object(provider._session, "get", return_value=_response([])):
            with patch.object(provider._session, "post") as mock_post:
                mock_post.return_value = _response()

                result = provider.create(SPEC)

                mock_post.assert_called_once_with(
                    "http://adguard.local/control/rewrite/add",
                    json={"domain": "app.example.com", "answer": "10.0.0.1"},
                    timeout=5,
                )

        assert result.outcome == CreateOutcome.CREATED
        assert parse_adguard_record_id(result.external_id) == ("app.example.com", "10.0.0.1")

    def test_create_existing_rewrite_is_duplicate(self) -> None:
        provider = _client()
        existing = [{"domain": "APP.example.com", "answer": "10.0.0.1"}]

        with patch.object(provider._session, "get", return_value=_response(existing)):
            with patch.object(provider._session, "post") as mock_post:
                result = provider.create(SPEC)

                mock_post.assert_not_called()

        assert result.outcome == CreateOutcome.DUPLICATE
        assert result.external_id == adguard_record_id("app.example.com", RecordType.A, "10.0.0.1")

    def test_create_different_answer_is_not_duplicate(self) -> None:
        provider = _client()
        existing = [{"domain": "app.example.com", "answer": "10.0.0.9"}]

        with patch.object(provider._session, "get", return_value=_response(existing)):
            with patch.object(provider._session, "post", return_value=_response()):
                result = provider.create(SPEC)

        assert result.outcome == CreateOutcome.CREATED

    def test_create_failure_is_reported_not_raised(self) -> None:
        provider = _client()

        with patch.object(provider._session, "get", return_value=_response([])):
            with patch.object(provider._session, "post") as mock_post:
                mock_post.side_effect = requests.exceptions.RequestException("Server error")

                result = provider.create(SPEC)

        assert result.outcome == CreateOutcome.FAILED
        assert "Server error" in result.error

    def test_create_fails_when_listing_fails(self) -> None:
        provider = _client()

        with patch.object(provider._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")

            result = provider.create(SPEC)

        assert result.outcome == CreateOutcome.FAILED


class TestAdGuardDelete:
    """Tests for deleting rewrites by record id."""

    def test_delete_success(self) -> None:
        provider = _client()
        external_id = adguard_record_id("app.example.com", RecordType.AAAA, "fd00::1")

        with patch.object(provider._session, "post") as mock_post:
            mock_post.return_value = _response()

            assert provider.delete(external_id) is True
            mock_post.assert_called_once_with(
                "http://adguard.local/control/rewrite/delete",
                json={"domain": "app.example.com", "answer": "fd00::1"},
                timeout=5,
            )

    def test_delete_failure(self) -> None:
        provider = _client()

        with patch.object(provider._session, "post") as mock_post:
            mock_post.side_effect = requests.exceptions.RequestException("Server error")

            assert provider.delete(adguard_record_id("a.example.com", RecordType.A, "10.0.0.1")) is False

    def test_delete_invalid_id(self) -> None:
        provider = _client()

        with patch.object(provider._session, "post") as mock_post:
            assert provider.delete("bm90LWEtdmFsaWQtaWQ=") is False
            mock_post.assert_not_called()


class TestAdGuardSetup:
    """Tests for client construction and the provider registry."""

    def test_provider_uses_basic_auth_when_credentials_provided(self) -> None:
        provider = _client()

        assert provider._session.auth is not None
        assert provider._session.auth.username == "admin"  # type: ignore[union-attr]

    def test_provider_works_without_auth(self) -> None:
        provider = AdGuardProviderClient(url="http://adguard.local/", username="", password="")

        assert provider._session.auth is None
        assert provider._url == "http://adguard.local"
        assert provider.name == "AdGuard Home"
        assert provider.capabilities() == ADGUARD_CAPABILITIES

    def test_create_provider_client_adguard(self) -> None:
        provider = Provider(
            id="home",
            name="Home",
            type="adguard",
            zone="home.example.com",
            capabilities=ADGUARD_CAPABILITIES,
            settings=(("password", "pw"), ("url", "http://dns.local"), ("username", "admin")),
        )

        client = create_provider_client(provider)

        assert isinstance(client, AdGuardProviderClient)
        assert client._url == "http://dns.local"

    def test_create_provider_client_unsupported(self) -> None:
        provider = Provider(
            id="x", name="X", type="route53", zone="example.com", capabilities=ADGUARD_CAPABILITIES
        )

        with pytest.raises(ValueError):
            create_provider_client(provider)

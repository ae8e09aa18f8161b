"""Unit tests for operator API key authentication."""

from unittest.mock import patch

import pytest
from fastapi import HTTPException

from scan_gate.core.auth import parse_api_keys, validate_api_key, verify_api_key
from scan_gate.core.errors import AuthenticationAppError


class TestParseAPIKeys:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("my-secret-key", {"my-secret-key"}),
            ("key1 , key2  ,  key3", {"key1", "key2", "key3"}),
            ("key1,key2,key1", {"key1", "key2"}),
            ("   ,  ,  ", set()),
            ("", set()),
            (None, set()),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_api_keys(raw) == expected


class TestValidateAPIKey:
    @patch("scan_gate.core.auth.settings")
    def test_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        validate_api_key("any-random-key")
        validate_api_key("")

    @pytest.mark.parametrize("configured", [None, ""])
    @patch("scan_gate.core.auth.settings")
    def test_raises_when_no_keys_configured(self, mock_settings, configured) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = configured

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"

    @patch("scan_gate.core.auth.settings")
    def test_accepts_any_configured_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = " key1 , key2 "

        validate_api_key("key1")
        validate_api_key("key2")

    @pytest.mark.parametrize("provided", ["invalid-key", "", " key1 ", "key"])
    @patch("scan_gate.core.auth.settings")
    def test_rejects_unknown_key(self, mock_settings, provided: str) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "key1,key2"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(provided)

        assert exc_info.value.code == "invalid_api_key"

    @patch("scan_gate.core.auth.settings")
    def test_rejected_key_is_logged_as_hash(self, mock_settings, caplog) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "key1"

        with caplog.at_level("WARNING", logger="scan_gate.core.auth"):
            with pytest.raises(AuthenticationAppError):
                validate_api_key("leaked-secret")

        record = next(r for r in caplog.records if r.getMessage() == "operator_auth.rejected")
        assert record.api_key_hash != "leaked-secret"
        assert len(record.api_key_hash) == 16


class TestVerifyAPIKeyDependency:
    @patch("scan_gate.core.auth.settings")
    async def test_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        await verify_api_key(x_api_key=None)

    @patch("scan_gate.core.auth.settings")
    async def test_missing_header_is_403(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key=None)

        assert exc_info.value.status_code == 403
        assert "Missing API key" in exc_info.value.detail

    @patch("scan_gate.core.auth.settings")
    async def test_invalid_key_is_403(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "valid-key"

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key="wrong-key")

        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Invalid or missing API key"

    @patch("scan_gate.core.auth.settings")
    async def test_accepts_valid_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "my-valid-key,another-key"

        await verify_api_key(x_api_key="my-valid-key")
        await verify_api_key(x_api_key="another-key")

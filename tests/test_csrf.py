"""Tests for the action Origin check and the development cross-origin guard."""

import pytest

from canopy.middleware.csrf import is_origin_allowed, validate_action_origin
from canopy.middleware.dev_origin import dev_block_reason, validate_dev_request

# ---------------------------------------------------------------------------
# Action origin
# ---------------------------------------------------------------------------


class TestValidateActionOrigin:
    def test_missing_origin_passes(self) -> None:
        assert validate_action_origin({"host": "app.test"}) is None

    def test_null_origin_passes(self) -> None:
        assert validate_action_origin({"origin": "null", "host": "app.test"}) is None

    def test_same_origin_passes(self) -> None:
        assert validate_action_origin({"origin": "https://app.test", "host": "app.test"}) is None

    def test_same_origin_with_port(self) -> None:
        headers = {"origin": "http://localhost:3000", "host": "localhost:3000"}
        assert validate_action_origin(headers) is None

    def test_default_port_is_dropped(self) -> None:
        headers = {"origin": "https://app.test:443", "host": "app.test"}
        assert validate_action_origin(headers) is None

    def test_foreign_origin_is_403(self) -> None:
        response = validate_action_origin({"origin": "https://evil.test", "host": "app.test"})
        assert response is not None
        assert response.status == 403
        assert response.text == "Forbidden"

    def test_forwarded_host_is_ignored(self) -> None:
        headers = {
            "origin": "https://evil.test",
            "host": "app.test",
            "x-forwarded-host": "evil.test",
        }
        assert validate_action_origin(headers) is not None

    def test_origin_that_is_not_a_url(self) -> None:
        response = validate_action_origin({"origin": "not a url", "host": "app.test"})
        assert response is not None
        assert response.status == 403

    def test_allowed_wildcard(self) -> None:
        headers = {"origin": "https://admin.example.com", "host": "app.test"}
        assert validate_action_origin(headers, ["*.example.com"]) is None
        assert validate_action_origin(headers, ["other.com"]) is not None


class TestIsOriginAllowed:
    @pytest.mark.parametrize(
        ("host", "expected"),
        [
            ("example.com", True),
            ("a.example.com", True),
            ("a.b.example.com", True),
            ("badexample.com", False),
        ],
    )
    def test_wildcard(self, host: str, expected: bool) -> None:
        assert is_origin_allowed(host, ["*.example.com"]) is expected

    def test_exact(self) -> None:
        assert is_origin_allowed("cdn.test:8080", ["cdn.test:8080"])
        assert not is_origin_allowed("cdn.test", ["cdn.test:8080"])


# ---------------------------------------------------------------------------
# Development guard
# ---------------------------------------------------------------------------


class TestDevOrigin:
    def test_no_origin_passes(self) -> None:
        assert dev_block_reason({"host": "localhost:3000"}) is None

    def test_loopback_passes(self) -> None:
        assert dev_block_reason({"origin": "http://localhost:5173", "host": "localhost:3000"}) is None
        assert dev_block_reason({"origin": "http://app.localhost", "host": "localhost:3000"}) is None

    def test_cross_site_no_cors_blocked(self) -> None:
        headers = {"sec-fetch-site": "cross-site", "sec-fetch-mode": "no-cors"}
        assert dev_block_reason(headers) == "cross-site no-cors request"

    def test_foreign_origin_blocked(self) -> None:
        headers = {"origin": "https://evil.test", "host": "localhost:3000"}
        response = validate_dev_request(headers, path="/")
        assert response is not None
        assert response.status == 403

    def test_allowed_dev_origin(self) -> None:
        headers = {"origin": "https://tunnel.test", "host": "localhost:3000"}
        assert validate_dev_request(headers, ["tunnel.test"]) is None

"""Tests for control signals, digests and client-safe error values."""

import pytest

from canopy.rendering.digest import PRODUCTION_ERROR_MESSAGE, error_digest, sanitize_error, string_hash
from canopy.signals import (
    ForbiddenSignal,
    NotFoundSignal,
    RedirectSignal,
    UnauthorizedSignal,
    forbidden,
    not_found,
    parse_digest,
    permanent_redirect,
    redirect,
    unauthorized,
)

# ---------------------------------------------------------------------------
# Raising helpers
# ---------------------------------------------------------------------------


class TestRaisingHelpers:
    def test_redirect(self) -> None:
        with pytest.raises(RedirectSignal) as info:
            redirect("/login")
        assert info.value.status == 307
        assert info.value.digest == "NEXT_REDIRECT;replace;/login;307"

    def test_permanent_redirect(self) -> None:
        with pytest.raises(RedirectSignal) as info:
            permanent_redirect("/new", "push")
        assert info.value.status == 308
        assert info.value.redirect_type == "push"

    def test_access_fallbacks(self) -> None:
        with pytest.raises(NotFoundSignal) as nf:
            not_found()
        assert nf.value.digest == "NEXT_NOT_FOUND"
        with pytest.raises(ForbiddenSignal) as fb:
            forbidden()
        assert fb.value.digest == "NEXT_HTTP_ERROR_FALLBACK;403"
        with pytest.raises(UnauthorizedSignal) as ua:
            unauthorized()
        assert ua.value.status == 401


class TestParseDigest:
    def test_redirect_url_with_semicolons(self) -> None:
        signal = parse_digest("NEXT_REDIRECT;push;/a;b?c=1;308")
        assert isinstance(signal, RedirectSignal)
        assert signal.url == "/a;b?c=1"
        assert signal.status == 308
        assert signal.redirect_type == "push"

    def test_redirect_round_trip(self) -> None:
        original = RedirectSignal("/x", "replace", 307)
        rebuilt = parse_digest(original.digest)
        assert isinstance(rebuilt, RedirectSignal)
        assert (rebuilt.url, rebuilt.status) == ("/x", 307)

    def test_access_fallbacks(self) -> None:
        assert isinstance(parse_digest("NEXT_NOT_FOUND"), NotFoundSignal)
        assert isinstance(parse_digest("NEXT_HTTP_ERROR_FALLBACK;403"), ForbiddenSignal)
        assert isinstance(parse_digest("NEXT_HTTP_ERROR_FALLBACK;401"), UnauthorizedSignal)

    @pytest.mark.parametrize("digest", [None, "", "12345", "NEXT_REDIRECT", "NEXT_HTTP_ERROR_FALLBACK;500"])
    def test_unknown(self, digest: str | None) -> None:
        assert parse_digest(digest) is None


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------


class TestDigest:
    def test_string_hash(self) -> None:
        assert string_hash("") == "5381"
        assert string_hash("a") == "177604"

    def test_string_hash_is_unsigned_32_bit(self) -> None:
        value = int(string_hash("x" * 500))
        assert 0 <= value < 2**32

    def test_signal_keeps_its_digest(self) -> None:
        assert error_digest(NotFoundSignal()) == "NEXT_NOT_FOUND"

    def test_error_digest_is_numeric(self) -> None:
        try:
            raise ValueError("db down")
        except ValueError as exc:
            assert error_digest(exc).isdigit()


class TestSanitizeError:
    def test_production_hides_message(self) -> None:
        value = sanitize_error(ValueError("password=hunter2"), debug=False)
        assert value["message"] == PRODUCTION_ERROR_MESSAGE
        assert value["digest"].isdigit()

    def test_debug_keeps_message(self) -> None:
        value = sanitize_error(ValueError("db down"), debug=True)
        assert value["message"] == "db down"

    def test_signal_passes_through(self) -> None:
        value = sanitize_error(ForbiddenSignal(), debug=False)
        assert value == {
            "message": "NEXT_HTTP_ERROR_FALLBACK;403",
            "digest": "NEXT_HTTP_ERROR_FALLBACK;403",
        }

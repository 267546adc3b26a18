"""Control signals - redirects and access fallbacks raised from view code.

Signals are exceptions so they unwind arbitrarily deep view code, but they
are not errors: boundaries and the request pipeline intercept them by type
and never log them as failures. Each signal carries a ``digest`` string so
it survives serialization into the payload stream and can be rebuilt on
the other side with ``parse_digest()``.

Usage::

    from canopy.signals import not_found, redirect

    async def page(params):
        post = await load_post(params["slug"])
        if post is None:
            not_found()
        if post.moved_to:
            redirect(post.moved_to)
        ...
"""

from typing import Literal, NoReturn

type RedirectType = Literal["push", "replace"]

REDIRECT_PREFIX = "NEXT_REDIRECT"
NOT_FOUND_DIGEST = "NEXT_NOT_FOUND"
ACCESS_FALLBACK_PREFIX = "NEXT_HTTP_ERROR_FALLBACK"


class ControlSignal(Exception):  # noqa: N818 - a signal, not an error
    """Base for all control signals."""

    digest: str

    @property
    def status(self) -> int:
        raise NotImplementedError


class RedirectSignal(ControlSignal):
    """Navigate to ``url``; ``status`` is 307 (temporary) or 308 (permanent)."""

    def __init__(
        self,
        url: str,
        redirect_type: RedirectType = "replace",
        status: int = 307,
    ) -> None:
        self.url = url
        self.redirect_type = redirect_type
        self._status = status
        self.digest = f"{REDIRECT_PREFIX};{redirect_type};{url};{status}"
        super().__init__(self.digest)

    @property
    def status(self) -> int:
        return self._status


class HTTPAccessFallbackSignal(ControlSignal):
    """Render the access fallback view for ``status`` (404, 403, 401)."""

    def __init__(self, status: int) -> None:
        self._status = status
        if status == 404:
            self.digest = NOT_FOUND_DIGEST
        else:
            self.digest = f"{ACCESS_FALLBACK_PREFIX};{status}"
        super().__init__(self.digest)

    @property
    def status(self) -> int:
        return self._status


class NotFoundSignal(HTTPAccessFallbackSignal):
    def __init__(self) -> None:
        super().__init__(404)


class ForbiddenSignal(HTTPAccessFallbackSignal):
    def __init__(self) -> None:
        super().__init__(403)


class UnauthorizedSignal(HTTPAccessFallbackSignal):
    def __init__(self) -> None:
        super().__init__(401)


# -- Raising helpers --


def redirect(url: str, redirect_type: RedirectType = "replace") -> NoReturn:
    """Abort rendering and redirect to *url* (307)."""
    raise RedirectSignal(url, redirect_type, 307)


def permanent_redirect(url: str, redirect_type: RedirectType = "replace") -> NoReturn:
    """Abort rendering and redirect to *url* (308)."""
    raise RedirectSignal(url, redirect_type, 308)


def not_found() -> NoReturn:
    """Abort rendering and show the nearest not-found view."""
    raise NotFoundSignal()


def forbidden() -> NoReturn:
    """Abort rendering and show the forbidden view (403)."""
    raise ForbiddenSignal()


def unauthorized() -> NoReturn:
    """Abort rendering and show the unauthorized view (401)."""
    raise UnauthorizedSignal()


# -- Digest round-trip --


def parse_digest(digest: str | None) -> ControlSignal | None:
    """Rebuild a signal from its digest, or ``None`` for anything else.

    Redirect URLs may themselves contain ``;``, so the URL is everything
    between the type and the trailing status.
    """
    if not digest:
        return None
    if digest == NOT_FOUND_DIGEST:
        return NotFoundSignal()
    if digest.startswith(REDIRECT_PREFIX + ";"):
        parts = digest.split(";")
        if len(parts) < 3:
            return None
        redirect_type = "push" if parts[1] == "push" else "replace"
        status = 307
        url_parts = parts[2:]
        if len(url_parts) > 1 and url_parts[-1].isdigit():
            status = int(url_parts[-1])
            url_parts = url_parts[:-1]
        return RedirectSignal(";".join(url_parts), redirect_type, status)
    if digest.startswith(ACCESS_FALLBACK_PREFIX + ";"):
        code = digest.split(";", 1)[1]
        if code == "403":
            return ForbiddenSignal()
        if code == "401":
            return UnauthorizedSignal()
        if code == "404":
            return NotFoundSignal()
    return None

"""Application configuration.

AppConfig is a frozen dataclass - immutable after creation, IDE-autocompletable,
no string-key dict lookups. Loading it from files is left to the caller.
"""

from dataclasses import dataclass, field

from canopy.rules.types import HeaderRule, RedirectRule, RewriteRules


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(
            base_path="/docs",
            redirects=(RedirectRule("/old/:slug", "/new/:slug", permanent=True),),
        )
    """

    # Development mode: original errors reach view code, dev-origin guard on
    debug: bool = False

    # Routing
    base_path: str = ""
    trailing_slash: bool = False

    # Config rules
    redirects: tuple[RedirectRule, ...] = ()
    rewrites: RewriteRules = field(default_factory=RewriteRules)
    headers: tuple[HeaderRule, ...] = ()

    # Security
    allowed_origins: tuple[str, ...] = ()  # Extra origins accepted for mutation actions
    allowed_dev_origins: tuple[str, ...] = ()  # Cross-origin hosts allowed in debug mode

    # Limits
    max_action_body_size: int = 1024 * 1024  # 1 MiB
    proxy_timeout: float = 30.0

    # Reserved paths
    image_path: str = "/_canopy/image"

    # Document shell
    lang: str = "en"

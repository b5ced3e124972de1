"""Application configuration.

AppConfig is a frozen dataclass: immutable after creation, IDE-autocompletable,
no string-key dict lookups.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = AppConfig(debug=True, request_timeout=5.0)
    """

    debug: bool = False

    # Routing
    case_sensitive_paths: bool = False

    # Per-request deadline in seconds (None disables it)
    request_timeout: float | None = 30.0

    # Limits
    max_content_length: int = 16 * 1024 * 1024  # 16 MB

    # Problem details
    problem_type_base: str = "about:blank"
    include_exception_details: bool = False

    # Logging
    log_level: str = "info"

    @property
    def show_exception_details(self) -> bool:
        """Whether 500 problem bodies carry the exception text."""
        return self.debug or self.include_exception_details

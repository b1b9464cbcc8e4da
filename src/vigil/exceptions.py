from typing import override


class VigilError(Exception):
    """Base exception for vigil errors."""

    def format_user_message(self) -> str:
        """Format a user-friendly error message."""
        return str(self)

    def get_suggestion(self) -> str | None:
        """Return actionable suggestion for resolving the error."""
        return None


class ConfigError(VigilError):
    """Raised when configuration is invalid or cannot be loaded."""

    @override
    def get_suggestion(self) -> str:
        return "Check vigil.yaml and the command-line options"


class InvalidPatternsError(ConfigError):
    """Raised when a glob pattern option is malformed."""

    _option: str
    _reason: str

    def __init__(self, option: str, reason: str = "must be a non-empty list of strings") -> None:
        self._option = option
        self._reason = reason
        super().__init__(f"The '{option}' option {reason}")

    @property
    def option(self) -> str:
        return self._option

    @override
    def get_suggestion(self) -> str:
        return f"Omit '{self._option}' to use the defaults, or list at least one pattern"

    @override
    def __reduce__(self) -> tuple[type, tuple[str, str]]:
        return (self.__class__, (self._option, self._reason))

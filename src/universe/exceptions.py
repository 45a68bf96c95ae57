from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from azure.cosmos.exceptions import CosmosHttpResponseError  # type: ignore[import]

if TYPE_CHECKING:
    from .gravity import Gravity


# Store failures are re-raised as the SDK's own objects, never wrapped.
TransportError = CosmosHttpResponseError


class UniverseError(RuntimeError):
    """Base class for every error raised by the repository layer."""

    pass


class ConfigurationError(UniverseError):
    """Raised when a repository or connection is set up incorrectly."""

    pass


class ValidationError(UniverseError):
    """Raised when query options are rejected before execution.

    ``messages`` holds every distinct violation found; the exception text
    joins them by newline.
    """

    def __init__(self, messages: Sequence[str]) -> None:
        self.messages: List[str] = list(messages)
        super().__init__("\n".join(self.messages))


class NotFoundError(UniverseError):
    """Raised when a keyed document does not exist."""

    pass


class AlreadyExistsError(NotFoundError):
    """Raised by the pre-insert existence check when a match is found."""

    pass


class BulkOperationError(UniverseError):
    """Raised after a bulk operation settles with at least one failed item.

    Attributes
    ----------
    failures:
        ``(index, exception)`` pairs, index being the item's position in the input.
    succeeded:
        Ids of the items the store accepted before the failure was reported.
    gravity:
        Cost envelope of the successful requests.
    """

    def __init__(
        self,
        message: str,
        failures: Sequence[Tuple[int, BaseException]],
        succeeded: Sequence[str],
        gravity: Optional["Gravity"] = None,
    ) -> None:
        super().__init__(message)
        self.failures = list(failures)
        self.succeeded = list(succeeded)
        self.gravity = gravity

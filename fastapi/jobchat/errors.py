from typing import Any, Mapping, Optional


class ChatStoreError(Exception):
    """Base class for every error raised by the messaging store."""


class NotFound(ChatStoreError):
    pass


class InvalidParticipants(ChatStoreError):
    pass


class TransientIO(ChatStoreError):
    """The underlying store is unavailable; the whole operation can be retried."""


class PartialFanoutFailure(ChatStoreError):
    """One or more per-participant writes failed.

    Writes that succeeded are not rolled back. ``results`` maps the replica
    owners that were written to their write result, ``failed`` maps the other
    owners to the error their write raised. ``message`` is set by the
    replicator to the message the caller should display as FAILED.
    """

    def __init__(
        self,
        operation: str,
        results: Mapping[str, Any],
        failed: Mapping[str, BaseException],
        message=None,
    ) -> None:
        self.operation = operation
        self.results = dict(results)
        self.failed = dict(failed)
        self.message = message
        super().__init__(
            f"{operation}: {len(self.failed)} of {len(self.failed) + len(self.results)} "
            f"replica writes failed ({', '.join(sorted(self.failed))})"
        )

    @property
    def succeeded(self) -> list:
        return sorted(self.results)

    @property
    def cause(self) -> Optional[BaseException]:
        for owner in sorted(self.failed):
            return self.failed[owner]
        return None

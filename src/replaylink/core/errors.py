"""Exception types raised at ReplayLink module boundaries."""


class ReplayLinkError(Exception):
    """Base class for all ReplayLink errors."""


class InvalidReplayError(ReplayLinkError):
    """The replay payload is missing required data; nothing was written."""

    def __init__(self, message: str, replay_id: str | None = None):
        super().__init__(message)
        self.replay_id = replay_id


class IngestionError(ReplayLinkError):
    """The re-ingestion transaction failed and was rolled back."""

    def __init__(self, replay_id: str, cause: Exception | None = None):
        message = f"Ingestion of replay {replay_id!r} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.replay_id = replay_id
        self.cause = cause


class ReplayFetchError(ReplayLinkError):
    """The replay payload could not be fetched or was unusable."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class NotFoundError(ReplayLinkError):
    """A battle, team or team version id does not exist."""

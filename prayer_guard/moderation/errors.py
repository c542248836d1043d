class ModerationError(Exception):
    """Base class for moderation failures."""


class ValidationError(ModerationError):
    """Media rejected on format, size or duration before any provider call.

    ``str(exc)`` is the user-facing message; ``check`` names the rule.
    """

    def __init__(self, message: str, check: str = "format"):
        super().__init__(message)
        self.check = check

    @property
    def model_version(self) -> str:
        return f"{self.check}-validation"


class ProviderError(ModerationError):
    """Timeout, transport failure or non-2xx answer from the classification provider."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTaskFailed(ProviderError):
    """The provider reports that an async task could not be processed."""


class PersistenceError(ModerationError):
    """A moderation log, task or config write did not reach the store."""


class NotFoundError(ModerationError):
    pass


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str):
        super().__init__(f"Moderation task not found: {task_id}")
        self.task_id = task_id

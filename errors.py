"""Exceptions raised by the dashboard core.

Two tiers matter to callers:

- `PreconditionError`: detected locally, before any request reaches the node.
- `HubApiError`: the node control API answered with a failure.

Transport failures surface as `httpx.HTTPError` and are treated like
`HubApiError` by the workflows.
"""


class HubError(Exception):
    def __init__(self, user_message: str, technical_message: str | None = None):
        super().__init__(user_message)
        self.user_message = user_message
        self.technical_message = technical_message or user_message

    def __str__(self) -> str:
        return self.user_message


class PreconditionError(HubError):
    pass


class CsrfTokenMissing(PreconditionError):
    def __init__(self) -> None:
        super().__init__("csrf not loaded")


class OperationInProgress(PreconditionError):
    def __init__(self, key: str):
        super().__init__(
            f"An operation for {key} is already in progress",
            technical_message=f"in-flight guard rejected {key!r}",
        )
        self.key = key


class CapabilityUnavailable(PreconditionError):
    def __init__(self, action: str, backend: str):
        super().__init__(
            f"{action} is not supported by the {backend} backend",
        )
        self.action = action
        self.backend = backend


class InvalidTransition(PreconditionError):
    def __init__(self, state: str, step: str):
        super().__init__(
            f"Cannot {step} while the workflow is {state}",
        )
        self.state = state
        self.step = step


class HubApiError(HubError):
    def __init__(self, message: str, status_code: int | None = None):
        technical = f"HTTP {status_code}: {message}" if status_code else message
        super().__init__(message, technical_message=technical)
        self.status_code = status_code

from __future__ import annotations

import httpx


class APIError(RuntimeError):
    """Error raised when the helpdesk service answers with a failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.response = response

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"


class TransitionRejectedByServer(APIError):
    """The service enforced its copy of the lifecycle rules and refused the action.

    The message is the server's, to be shown to the user as-is. Retrying the
    same request cannot succeed.
    """

    def __str__(self) -> str:
        return self.message


class IllegalTransitionRequested(RuntimeError):
    """An action was requested that the local policy decision does not allow."""

    def __init__(self, action: str, ticket_id: str) -> None:
        super().__init__(f"'{action}' is not available for ticket {ticket_id}; refresh and retry")
        self.action = action
        self.ticket_id = ticket_id


class TransitionInFlightError(RuntimeError):
    """Another action on the same session has not completed yet."""

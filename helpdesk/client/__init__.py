"""Client side of the helpdesk service: HTTP access and gated ticket sessions."""

from .api import HelpdeskAPIClient
from .errors import APIError, IllegalTransitionRequested, TransitionInFlightError, TransitionRejectedByServer
from .session import TicketSession

__all__ = [
    "APIError",
    "HelpdeskAPIClient",
    "IllegalTransitionRequested",
    "TicketSession",
    "TransitionInFlightError",
    "TransitionRejectedByServer",
]

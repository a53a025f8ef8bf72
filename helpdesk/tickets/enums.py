from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles an actor can hold for the duration of a session."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    ADMIN = "ADMIN"

    @property
    def tier(self) -> Tier | None:
        if self is Role.ADMIN:
            return None
        return Tier(self.value)


class Tier(str, Enum):
    """Support level currently owning a ticket."""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    @property
    def next(self) -> Tier | None:
        """Escalation target of this tier, ``None`` at the top."""

        order = list(Tier)
        index = order.index(self)
        if index + 1 < len(order):
            return order[index + 1]
        return None


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle."""

    NEW = "New"
    ATTENDING = "Attending"
    COMPLETED = "Completed"
    ESCALATED = "Escalated"
    RESOLVED = "Resolved"

    @property
    def is_settled(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.RESOLVED)


class Severity(str, Enum):
    """Classification assigned at tier L2; C1 is the most severe."""

    C1 = "C1"
    C2 = "C2"
    C3 = "C3"

    @property
    def label(self) -> str:
        return _SEVERITY_LABELS[self]


_SEVERITY_LABELS: dict[Severity, str] = {
    Severity.C1: "Critical",
    Severity.C2: "High",
    Severity.C3: "Medium",
}


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Category(str, Enum):
    TECHNICAL_SUPPORT = "Technical Support"
    SOFTWARE_ISSUE = "Software Issue"
    HARDWARE_ISSUE = "Hardware Issue"
    NETWORK_PROBLEM = "Network Problem"
    ACCESS_REQUEST = "Access Request"
    GENERAL_INQUIRY = "General Inquiry"


def permits_escalation(severity: Severity | None) -> bool:
    """Return whether a ticket of this severity may reach or act at the top tier."""

    return severity in (Severity.C1, Severity.C2)

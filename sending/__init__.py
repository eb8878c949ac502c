from .coordinator import SendCoordinator
from .form import SendParams, parse_send_form
from .session import TERMINAL_STATES, SessionState, SigningSession

__all__ = [
    "SendCoordinator",
    "SendParams",
    "parse_send_form",
    "TERMINAL_STATES",
    "SessionState",
    "SigningSession",
]

"""memoplane - cross-run memoization with dependency tracking.

Decorate functions with ``memoize`` and run the program under
``memoplane run``; results are replayed on later runs until the code,
globals or files they depended on change.
"""

from memoplane.engine import CallBoundaryProtocol
from memoplane.runtime import Session, activate, active_session, deactivate, install, memoize

__version__ = "0.1.0"

__all__ = [
    "CallBoundaryProtocol",
    "Session",
    "activate",
    "active_session",
    "deactivate",
    "install",
    "memoize",
]

"""Call boundary protocol."""

from memoplane.engine.protocol import CallBoundaryProtocol, FrameEntry

__all__ = ["CallBoundaryProtocol", "FrameEntry"]

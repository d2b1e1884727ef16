"""Call frame stack."""

from memoplane.frames.stack import CallFrame, CallStack, FrameState, NonCacheableReason

__all__ = ["CallFrame", "CallStack", "FrameState", "NonCacheableReason"]

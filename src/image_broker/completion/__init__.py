"""
Async completion tracking for submit-then-poll backends.
"""

from image_broker.completion.tracker import CompletionTracker, PollConfig, PollState, PollStatus

__all__ = [
    "CompletionTracker",
    "PollConfig",
    "PollState",
    "PollStatus",
]

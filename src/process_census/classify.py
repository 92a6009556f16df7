"""Run-state classification for processes and Mach threads.

Both backends report state in their own vocabulary: a single character in
/proc/<pid>/stat, or an integer run_state from thread_basic_info. These map
onto one shared set of categories. Classification never logs; callers decide
what to do with UNCLASSIFIED.
"""

from enum import Enum


class RunState(Enum):
    """Run-state categories counted every cycle."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    ZOMBIE = "zombie"
    STOPPED = "stopped"
    PAGING = "paging"
    BLOCKED = "blocked"
    UNCLASSIFIED = "unclassified"


# Mach thread run states (from mach/thread_info.h)
TH_STATE_RUNNING = 1
TH_STATE_STOPPED = 2
TH_STATE_WAITING = 3
TH_STATE_UNINTERRUPTIBLE = 4
TH_STATE_HALTED = 5

PROC_STATE_CODES = {
    "R": RunState.RUNNING,
    "S": RunState.SLEEPING,
    "D": RunState.BLOCKED,
    "Z": RunState.ZOMBIE,
    "T": RunState.STOPPED,
    "W": RunState.PAGING,
}

THREAD_STATE_CODES = {
    TH_STATE_RUNNING: RunState.RUNNING,
    TH_STATE_STOPPED: RunState.STOPPED,
    TH_STATE_WAITING: RunState.SLEEPING,
    TH_STATE_UNINTERRUPTIBLE: RunState.BLOCKED,
    TH_STATE_HALTED: RunState.STOPPED,
}


def classify_proc_state(code: str) -> RunState:
    """Map a /proc state character (R, S, D, Z, T, W) to a RunState.

    Args:
        code: State field from /proc/<pid>/stat. Only the first character
            is significant.

    Returns:
        The matching RunState, or UNCLASSIFIED for anything else
        (including an empty string).
    """
    return PROC_STATE_CODES.get(code[:1], RunState.UNCLASSIFIED)


def classify_thread_state(run_state: int) -> RunState:
    """Map a Mach thread run_state to a RunState.

    Halted threads count as stopped. There is no zombie thread state; zombie
    tasks are detected by the scanner when their threads cannot be listed.
    """
    return THREAD_STATE_CODES.get(run_state, RunState.UNCLASSIFIED)

"""Runtime module for subprocess management and admission control.

This module provides the slot pool bounding concurrently live CLI processes,
the cancellation token shared between callers and running requests, and
isolated process execution with reliable termination.
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .process_runner import (
    ProcessHandle,
    ProcessRunner,
    ProcessSpec,
    TerminationReason,
)
from .slot_pool import DEFAULT_MAX_PROCESSES, ProcessSlotPool, Slot

__all__ = [
    "CancellationToken",
    "DEFAULT_MAX_PROCESSES",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSlotPool",
    "ProcessSpec",
    "Slot",
    "TerminationReason",
]

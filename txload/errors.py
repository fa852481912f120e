"""Exceptions raised by the workload engine."""

from __future__ import annotations


class WorkloadError(Exception):
    """Base class for workload engine failures."""


class WorkloadConfigError(WorkloadError, ValueError):
    """Invalid or inconsistent workload configuration; nothing is executed."""


class TrackerOverrunError(WorkloadError, RuntimeError):
    """An insert was acknowledged beyond the acknowledgement window.

    Raised when producers outrun the tracker; the window is too small for the
    concurrency actually achieved.
    """

"""Errors raised by the Che manager reconciler and routing solver."""

from __future__ import annotations

from workspace_routing.solvers import RoutingError


class UnsupportedRoutingMode(RoutingError):
    """The manager asks for a routing mode this operator does not implement."""

    def __init__(self, mode: str) -> None:
        super().__init__(f"{mode} mode is not supported at the moment")
        self.mode = mode


class ManagerFinalizeError(Exception):
    """The manager cannot be released yet; the finalizer stays in place."""

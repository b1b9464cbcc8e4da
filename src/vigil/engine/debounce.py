"""Quiet-period timer that coalesces bursts of filesystem events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from anyio.abc import TaskGroup

__all__ = ["DEFAULT_DELAY", "Debouncer"]

_logger = logging.getLogger(__name__)

DEFAULT_DELAY = 0.1


class Debouncer:
    """True debounce: fires once, a full delay after the latest notify().

    Each arm runs a sleeping task in the owner's task group under its own cancel
    scope. The generation passed to ``on_fire`` lets the owner discard a firing
    that was overtaken by cancel() or a newer notify() while it was in flight.
    """

    _delay: float
    _on_fire: Callable[[int], Awaitable[None]]
    _task_group: TaskGroup | None
    _scope: anyio.CancelScope | None
    _generation: int

    def __init__(
        self, on_fire: Callable[[int], Awaitable[None]], delay: float = DEFAULT_DELAY
    ) -> None:
        if delay <= 0:
            raise ValueError(f"Debounce delay must be positive, got {delay}")
        self._delay = delay
        self._on_fire = on_fire
        self._task_group = None
        self._scope = None
        self._generation = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def armed(self) -> bool:
        """Whether a timer is pending (or fired but not yet consumed)."""
        return self._scope is not None

    @property
    def generation(self) -> int:
        return self._generation

    def attach(self, task_group: TaskGroup) -> None:
        """Bind to the task group that hosts timer tasks."""
        self._task_group = task_group

    def notify(self) -> None:
        """Arm the timer, or extend it a full delay from now."""
        if self._task_group is None:
            raise RuntimeError("Debouncer must be attached to a task group before notify()")
        if self._scope is not None:
            self._scope.cancel()
        self._generation += 1
        self._scope = anyio.CancelScope()
        self._task_group.start_soon(self._fire_after, self._scope, self._generation)

    def cancel(self) -> None:
        """Clear any armed timer without firing."""
        if self._scope is None:
            return
        self._scope.cancel()
        self._scope = None
        self._generation += 1
        _logger.debug("Debounce canceled")

    def consume(self, generation: int) -> bool:
        """Accept a firing if it belongs to the current arm, disarming the timer."""
        if self._scope is None or generation != self._generation:
            return False
        self._scope = None
        return True

    async def _fire_after(self, scope: anyio.CancelScope, generation: int) -> None:
        with scope:
            await anyio.sleep(self._delay)
            await self._on_fire(generation)

"""Bounded-concurrency execution of independent async units."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar, Union

from teams_proxy.graph.errors import InputValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class Fulfilled(Generic[T]):
    """A unit that completed with a value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """A unit that raised."""

    error: Exception

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Fulfilled[T], Rejected]


async def run_bounded(
    units: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[Outcome[T]]:
    """Run every unit with at most ``limit`` active at once.

    Units are zero-argument factories, so nothing starts before this call.
    Outcomes come back in submission order. A failing unit is recorded as
    Rejected and never retried; it does not stop the others. Cancelling the
    caller cancels every unit still pending.
    """
    if limit < 1:
        raise InputValidationError(f"Concurrency limit must be >= 1, got {limit}")
    if not units:
        return []

    semaphore = asyncio.Semaphore(limit)

    async def _run(unit: Callable[[], Awaitable[T]]) -> Outcome[T]:
        async with semaphore:
            try:
                return Fulfilled(await unit())
            except Exception as e:
                return Rejected(e)

    return list(await asyncio.gather(*(_run(unit) for unit in units)))

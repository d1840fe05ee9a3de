"""Scatter-gather over independent coroutines.

Every branch runs to completion; a branch that raises is reported as ``Err``
and never cancels its siblings. Outcomes keep the order of the inputs.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Generic, Iterable, List, Optional, TypeVar, Union

import structlog

T = TypeVar("T")

logger = structlog.get_logger()


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str
    error: Optional[BaseException] = None


Outcome = Union[Ok[T], Err]


async def _settle(label: str, awaitable: Awaitable[T]) -> "Outcome[T]":
    try:
        return Ok(await awaitable)
    except Exception as exc:
        logger.warning("fanout.branch_failed", branch=label, error=str(exc))
        return Err(str(exc) or exc.__class__.__name__, exc)


async def gather_settled(
    awaitables: Iterable[Awaitable[T]], *, labels: Optional[Iterable[str]] = None
) -> List["Outcome[T]"]:
    items = list(awaitables)
    names = list(labels) if labels is not None else [str(idx) for idx in range(len(items))]
    return list(await asyncio.gather(*(_settle(name, item) for name, item in zip(names, items))))


def successes(outcomes: Iterable["Outcome[T]"]) -> List[T]:
    return [outcome.value for outcome in outcomes if isinstance(outcome, Ok)]

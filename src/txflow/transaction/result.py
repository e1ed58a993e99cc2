"""
Step outcomes.

A step is a sync or async callable taking the active TransactionContext.
It reports failure either by returning `Err(...)` or by raising; both are
normalised into a `Result` here so the controller only ever has to look at
the outcome of a step, not catch it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from inspect import isawaitable
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Generic,
    TypeVar,
    Union,
)

from .interfaces import TransactionError

if TYPE_CHECKING:
    from .context import TransactionContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: BaseException


Result = Union[Ok[T], Err]
Step = Callable[["TransactionContext"], Union[T, Result, Awaitable[Any]]]


async def run_step(step: Step, context: TransactionContext) -> Result:
    """Run a step and capture its outcome

    Driver errors raised by the step are translated into the failure
    taxonomy by the context's connection handle. Errors that cannot be
    classified are kept as they are.
    """
    try:
        outcome = step(context)
        if isawaitable(outcome):
            outcome = await outcome
    except TransactionError as e:
        return Err(e)
    except Exception as e:
        failure = context.executor.classify(e)
        if failure is None:
            return Err(e)
        failure.__cause__ = e
        logger.debug(
            "Step in %s raised %s, classified as %s",
            context.transaction_id,
            type(e).__name__,
            type(failure).__name__,
        )
        return Err(failure)

    if isinstance(outcome, (Ok, Err)):
        return outcome
    return Ok(outcome)


def unwrap(result: Result) -> Any:
    if isinstance(result, Err):
        raise result.error
    return result.value

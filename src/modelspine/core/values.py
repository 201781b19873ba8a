"""Lazy value resolution.

Most model definition fields may be given three ways: a literal value, a
zero-argument callable producing the value, or a callable producing an
awaitable of the value. These helpers are the single place where that is
interpreted.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar, Union

T = TypeVar("T")

Lazy = Union[T, Callable[[], T], Callable[[], Awaitable[T]]]


def resolve(value: Any) -> Any:
    """Invoke ``value`` if it is callable, otherwise return it unchanged.

    The result may still be an awaitable; use :func:`resolve_async` from
    async code.
    """
    if callable(value):
        return value()
    return value


async def resolve_async(value: Any) -> Any:
    """Resolve a lazy field down to a concrete value."""
    return await settle(resolve(value))


async def settle(result: Any) -> Any:
    """Await ``result`` if it is awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result


def as_name_list(value: str | Iterable[str] | None) -> list[str]:
    """Normalise a single name or an iterable of names to a new list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


__all__ = ["Lazy", "resolve", "resolve_async", "settle", "as_name_list"]

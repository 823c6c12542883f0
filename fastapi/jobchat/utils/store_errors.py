import functools
from typing import Any, Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure

from jobchat.errors import TransientIO


T = TypeVar("T")


def translate_store_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise driver connectivity errors as ``TransientIO``."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except ConnectionFailure as exc:
            raise TransientIO(f"{func.__qualname__}: {exc}") from exc

    return wrapper

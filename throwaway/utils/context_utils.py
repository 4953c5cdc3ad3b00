"""Utilities for running blocking calls from the asyncio event loop."""
import asyncio
import concurrent.futures
import contextvars
import functools
from typing import Callable, Optional, TypeVar

from typing_extensions import ParamSpec

P = ParamSpec('P')
T = TypeVar('T')


def to_thread(func: Callable[P, T], /, *args: P.args,
              **kwargs: P.kwargs) -> 'asyncio.Future[T]':
    """Asynchronously run function *func* in a separate thread.

    This is same as asyncio.to_thread added in python 3.9
    """
    return to_thread_with_executor(None, func, *args, **kwargs)


def to_thread_with_executor(executor: Optional[concurrent.futures.Executor],
                            func: Callable[P, T], /, *args: P.args,
                            **kwargs: P.kwargs) -> 'asyncio.Future[T]':
    """Asynchronously run function *func* in a separate thread with
    a custom executor."""

    loop = asyncio.get_running_loop()
    pyctx = contextvars.copy_context()
    func_call: Callable[..., T] = functools.partial(pyctx.run, func, *args,
                                                    **kwargs)
    return loop.run_in_executor(executor, func_call)

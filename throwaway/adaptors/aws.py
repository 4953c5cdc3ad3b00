"""AWS cloud adaptors

Thread safety notes:

Blocking boto3 calls are dispatched to worker threads by
``context_utils.to_thread``, so a session may be requested from several threads
at once. The results of session() are cached by each thread in a
threading.local() storage, which makes using them thread-safe.

We do not cache the client objects, because some credentials may be
automatically rotated, but a cached client may not refresh the credential quick
enough, which can cause unexpected NoCredentialsError.

This is informed by the following boto3 docs:
- Unlike Resources and Sessions, clients are generally thread-safe.
  https://boto3.amazonaws.com/v1/documentation/api/latest/guide/clients.html
- Session objects are not thread safe and should not be shared across
  threads and processes.
  https://boto3.amazonaws.com/v1/documentation/api/latest/guide/session.html
"""

# pylint: disable=import-outside-toplevel

import functools
import logging
import threading
import time
import typing
from typing import Callable, Literal, TypeVar

from throwaway.adaptors import common
from throwaway.utils import common_utils

if typing.TYPE_CHECKING:
    import boto3
    _ = boto3  # Supress pylint use before assignment error
    import mypy_boto3_ec2
    import mypy_boto3_sts

_IMPORT_ERROR_MESSAGE = ('Failed to import dependencies for AWS. '
                         'Try pip install boto3')
boto3 = common.LazyImport('boto3', import_error_message=_IMPORT_ERROR_MESSAGE)
botocore = common.LazyImport('botocore',
                             import_error_message=_IMPORT_ERROR_MESSAGE)
_LAZY_MODULES = (boto3, botocore)

T = TypeVar('T')

logger = logging.getLogger(__name__)
_session_creation_lock = threading.RLock()

# Retry 5 times by default for potential credential errors.
_MAX_ATTEMPT_FOR_CREATION = 5


class _ThreadLocalSessionCache(threading.local):
    """Thread-local storage for _thread_local_cache decorator."""

    def __init__(self, func):
        super().__init__()
        self.func = func

    def get_cache(self):
        if not hasattr(self, 'cache'):
            self.cache = functools.lru_cache(maxsize=4)(self.func)
        return self.cache


def _thread_local_cache(func):
    local_cache = _ThreadLocalSessionCache(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return local_cache.get_cache()(*args, **kwargs)

    def cache_clear():
        # Only clears the cache of the current thread.
        local_cache.get_cache().cache_clear()

    wrapper.cache_clear = cache_clear
    return wrapper


def _assert_kwargs_builtin_type(kwargs):
    assert all(isinstance(v, (int, float, str)) for v in kwargs.values()), (
        f'kwargs should not contain none built-in types: {kwargs}')


def _create_aws_object(creation_fn_or_cls: Callable[[], T],
                       object_name: str) -> T:
    """Create an AWS object.

    Args:
        creation_fn: The function to create the AWS object.

    Returns:
        The created AWS object.
    """
    attempt = 0
    backoff = common_utils.Backoff()
    while True:
        try:
            # Creating the boto3 objects are not thread-safe,
            # so we add a reentrant lock to synchronize the session creation.
            # Reference: https://github.com/boto/boto3/issues/1592
            with _session_creation_lock:
                return creation_fn_or_cls()
        except (botocore_exceptions().CredentialRetrievalError,
                botocore_exceptions().NoCredentialsError) as e:
            attempt += 1
            if attempt >= _MAX_ATTEMPT_FOR_CREATION:
                raise
            time.sleep(backoff.current_backoff())
            logger.info(f'Retry creating AWS {object_name} due to '
                        f'{common_utils.format_exception(e)}.')


@_thread_local_cache
def session(check_credentials: bool = True):
    """Create an AWS session from the default credential chain."""
    s = _create_aws_object(boto3.session.Session, 'session')
    if check_credentials and s.get_credentials() is None:
        # Every call throwaway makes needs credentials.
        raise botocore_exceptions().NoCredentialsError()
    return s


@typing.overload
def client(service_name: Literal['ec2'], **kwargs) -> 'mypy_boto3_ec2.Client':
    pass


@typing.overload
def client(service_name: Literal['sts'], **kwargs) -> 'mypy_boto3_sts.Client':
    pass


def client(service_name: str, **kwargs):
    """Create an AWS client of a certain service.

    Args:
        service_name: AWS service name (e.g., 'ec2', 'sts').
        kwargs: Other options, e.g. region_name.
    """
    _assert_kwargs_builtin_type(kwargs)

    check_credentials = kwargs.pop('check_credentials', True)

    # Need to use the client retrieved from the per-thread session to avoid
    # thread-safety issues (Directly creating the client with boto3.client() is
    # not thread-safe). Reference: https://stackoverflow.com/a/59635814
    return _create_aws_object(
        lambda: session(check_credentials=check_credentials).client(
            service_name, **kwargs), 'client')


@common.load_lazy_modules(modules=_LAZY_MODULES)
def botocore_exceptions():
    """AWS botocore exception."""
    from botocore import exceptions
    return exceptions

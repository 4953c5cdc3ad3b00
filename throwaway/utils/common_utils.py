"""Utils shared between all of throwaway"""

import asyncio
import difflib
import random
import re
import time
from typing import Optional, Union
import uuid

import jsonschema

from throwaway import exceptions

_RESOURCE_NAME_INVALID_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


class Backoff:
    """Exponential backoff with jittering."""
    JITTER = 0.4

    def __init__(self,
                 initial_backoff: float = 5,
                 max_backoff_factor: int = 5,
                 multiplier: float = 1.6):
        self._initial = True
        self._backoff = 0.0
        self._initial_backoff = initial_backoff
        self._multiplier = multiplier
        self._max_backoff = max_backoff_factor * self._initial_backoff

    # https://github.com/grpc/grpc/blob/2d4f3c56001cd1e1f85734b2f7c5ce5f2797c38a/doc/connection-backoff.md

    def current_backoff(self) -> float:
        """Backs off once and returns the current backoff in seconds."""
        if self._initial:
            self._initial = False
            self._backoff = min(self._initial_backoff, self._max_backoff)
        else:
            self._backoff = min(self._backoff * self._multiplier,
                                self._max_backoff)
        self._backoff += random.uniform(-self.JITTER * self._backoff,
                                        self.JITTER * self._backoff)
        return self._backoff


class Poller:
    """Fixed-interval retry pacing with an optional deadline.

    Usage:
        poller = Poller(interval=2, timeout=120)
        while True:
            ...try the operation, break on success...
            if poller.expired():
                raise ...
            await poller.wait()

    A poller without a timeout never expires.
    """

    def __init__(self, interval: float, timeout: Optional[float] = None):
        self.interval = interval
        self.timeout = timeout
        self._start = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._start

    def expired(self) -> bool:
        if self.timeout is None:
            return False
        return self.elapsed() >= self.timeout

    async def wait(self) -> None:
        await asyncio.sleep(self.interval)


def class_fullname(cls, skip_builtins: bool = True):
    """Get the full name of a class.

    Example:
        >>> e = throwaway.exceptions.HostIdentityError()
        >>> class_fullname(e.__class__)
        'throwaway.exceptions.HostIdentityError'
    """
    module_name = getattr(cls, '__module__', '')
    if not module_name or (module_name == 'builtins' and skip_builtins):
        return cls.__name__
    return f'{cls.__module__}.{cls.__name__}'


def format_exception(e: Union[Exception, SystemExit, KeyboardInterrupt],
                     use_bracket: bool = False) -> str:
    """Format an exception to a string.

    Args:
        e: The exception to format.

    Returns:
        A string that represents the exception.
    """
    if use_bracket:
        return f'[{class_fullname(e.__class__)}] {e}'
    return f'{class_fullname(e.__class__)}: {e}'


def boto_error_code(e: Exception) -> Optional[str]:
    """Returns the AWS error code of a botocore ClientError, if any."""
    response = getattr(e, 'response', None)
    if not isinstance(response, dict):
        return None
    return response.get('Error', {}).get('Code')


def sanitize_resource_name(name: str) -> str:
    """Replaces characters EC2 rejects in resource names with '-'."""
    return _RESOURCE_NAME_INVALID_CHARS.sub('-', name)


def make_resource_name(user_name: str) -> str:
    """Returns a fresh 'throwaway-<user>-<uuid4>' resource name."""
    return f'throwaway-{sanitize_resource_name(user_name)}-{uuid.uuid4()}'


def validate_schema(obj, schema, err_msg_prefix='', skip_none=True):
    """Validates an object against a given JSON schema.

    Args:
        obj: The object to validate.
        schema: The JSON schema against which to validate the object.
        err_msg_prefix: The string to prepend to the error message if
          validation fails.
        skip_none: If True, removes fields with value None from the object
          before validation. yaml.safe_load() loads empty fields as None.

    Raises:
        InvalidConfigError: if the object does not match the schema.
    """
    if skip_none:
        obj = {k: v for k, v in obj.items() if v is not None}
    err_msg = None
    try:
        jsonschema.Draft7Validator(schema).validate(obj)
    except jsonschema.ValidationError as e:
        if e.validator == 'additionalProperties':
            err_msg = err_msg_prefix
            known_fields = set(e.schema.get('properties', {}).keys())
            for field in e.instance:
                if field not in known_fields:
                    most_similar_field = difflib.get_close_matches(
                        field, known_fields, 1)
                    if most_similar_field:
                        err_msg += (f'Instead of {field!r}, did you mean '
                                    f'{most_similar_field[0]!r}?')
                    else:
                        err_msg += f'Found unsupported field {field!r}.'
        else:
            message = e.message
            # Object in jsonschema is represented as dict in Python.
            message = message.replace('type \'object\'', 'type \'dict\'')
            err_msg = (err_msg_prefix + message +
                       f'. Check problematic field(s): {e.json_path}')

    if err_msg:
        raise exceptions.InvalidConfigError(err_msg)

"""Utility functions for subprocesses."""
import asyncio
import shlex
from typing import Callable, List, Optional, Tuple, Union

import colorama

from throwaway import exceptions
from throwaway import throwaway_logging

logger = throwaway_logging.init_logger(__name__)


async def run_async(argv: List[str]) -> Tuple[int, str, str]:
    """Runs argv without a shell and returns (returncode, stdout, stderr)."""
    logger.debug(f'Running: {shlex.join(argv)}')
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE)
    stdout, stderr = await proc.communicate()
    return (proc.returncode, stdout.decode('utf-8', errors='replace'),
            stderr.decode('utf-8', errors='replace'))


def handle_returncode(returncode: int,
                      command: str,
                      error_msg: Union[str, Callable[[], str]],
                      stderr: Optional[str] = None) -> None:
    """Handle the returncode of a command.

    Args:
        returncode: The returncode of the command.
        command: The command that was run.
        error_msg: The error message to print.
        stderr: The stderr of the command.
    """
    if returncode != 0:
        if stderr:
            logger.error(stderr)

        if callable(error_msg):
            error_msg = error_msg()
        format_err_msg = (
            f'{colorama.Fore.RED}{error_msg}{colorama.Style.RESET_ALL}')
        raise exceptions.CommandError(returncode, command, format_err_msg,
                                      stderr)

"""Runner for commands to be executed on an instance over ssh."""
import contextlib
import dataclasses
import os
import shlex
import tempfile
from typing import Iterator, List, Optional, Tuple

from throwaway import authentication
from throwaway import throwaway_logging
from throwaway.provision import constants
from throwaway.utils import common_utils
from throwaway.utils import subprocess_utils

logger = throwaway_logging.init_logger(__name__)

_DEFAULT_CONNECT_TIMEOUT = 30
# ssh exits with 255 when it could not connect or authenticate; any other
# code comes from the remote command.
SSH_CONNECTION_FAILURE_RETURNCODE = 255


@dataclasses.dataclass(frozen=True)
class CommandOutput:
    stdout: str
    stderr: str
    returncode: int


def ssh_options_list(
    ssh_private_key: str,
    known_hosts_path: str,
    *,
    connect_timeout: Optional[int] = None,
    port: int = constants.SSH_PORT,
) -> List[str]:
    """Returns a list of sane options for 'ssh'.

    The host key is pinned: only the key in `known_hosts_path` is accepted.
    """
    if connect_timeout is None:
        connect_timeout = _DEFAULT_CONNECT_TIMEOUT
    arg_dict = {
        # SSH port
        'Port': port,
        # Refuse any host key that is not in the known hosts file.
        'StrictHostKeyChecking': 'yes',
        'UserKnownHostsFile': known_hosts_path,
        # Suppresses the warning messages.
        'LogLevel': 'ERROR',
        # Try fewer extraneous key pairs.
        'IdentitiesOnly': 'yes',
        # Never prompt for a password or passphrase.
        'BatchMode': 'yes',
        # Quickly kill the connection if network connection breaks (as
        # opposed to hanging/blocking).
        'ServerAliveInterval': 5,
        'ServerAliveCountMax': 3,
        'ConnectTimeout': f'{connect_timeout}s',
    }
    return ['-i', ssh_private_key] + [
        x for y in (['-o', f'{k}={v}']
                    for k, v in arg_dict.items()
                    if v is not None) for x in y
    ]


class SSHCommandRunner:
    """Runner for ssh commands pinned to one host key.

    Credentials never touch a persistent location: each call writes the
    client key and a known hosts file into a fresh temporary directory that
    is removed when the call returns.
    """

    def __init__(self, ip: str, ssh_user: str, client_private_key: str,
                 host_public_key_bytes: bytes,
                 port: int = constants.SSH_PORT) -> None:
        self.ip = ip
        self.ssh_user = ssh_user
        self.port = port
        self._client_private_key = client_private_key
        self._host_public_key_bytes = host_public_key_bytes

    def __repr__(self) -> str:
        return f'SSHCommandRunner({self.ssh_user}@{self.ip}:{self.port})'

    @property
    def destination(self) -> str:
        return f'{self.ssh_user}@{self.ip}'

    def known_hosts_line(self) -> str:
        return authentication.known_hosts_line(self.ip,
                                               self._host_public_key_bytes)

    @contextlib.contextmanager
    def _credential_files(self) -> Iterator[Tuple[str, str]]:
        """Yields (private key path, known hosts path) for one call."""
        # mkdtemp creates the directory readable by the owner only.
        with tempfile.TemporaryDirectory(prefix='throwaway-ssh-') as tmp_dir:
            key_path = os.path.join(tmp_dir, 'client_key')
            known_hosts_path = os.path.join(tmp_dir, 'known_hosts')
            authentication.write_private_file(key_path,
                                              self._client_private_key)
            authentication.write_private_file(known_hosts_path,
                                              self.known_hosts_line())
            yield key_path, known_hosts_path

    def _ssh_options(self, key_path: str, known_hosts_path: str,
                     connect_timeout: Optional[int]) -> List[str]:
        return ssh_options_list(key_path,
                                known_hosts_path,
                                connect_timeout=connect_timeout,
                                port=self.port)

    async def run(self,
                  cmd: str,
                  *,
                  connect_timeout: Optional[int] = None) -> CommandOutput:
        """Runs cmd on the instance and returns its output, never raising."""
        with self._credential_files() as (key_path, known_hosts_path):
            argv = ['ssh'] + self._ssh_options(
                key_path, known_hosts_path,
                connect_timeout) + ['-T', self.destination, cmd]
            returncode, stdout, stderr = await subprocess_utils.run_async(argv)
        return CommandOutput(stdout=stdout,
                             stderr=stderr,
                             returncode=returncode)

    async def shell(self, cmd: str, check: bool = True) -> CommandOutput:
        """Runs cmd on the instance through the login shell of the user.

        Raises:
            CommandError: if check is set and the command failed.
        """
        output = await self.run(cmd)
        if check:
            subprocess_utils.handle_returncode(
                output.returncode,
                cmd,
                f'Failed to run command on {self.destination}.',
                stderr=output.stderr)
        return output

    async def wait_for_ssh(self, timeout: Optional[float] = None) -> None:
        """Waits until sshd accepts the pinned connection.

        Only connection failures are retried. A timeout of None waits
        forever.

        Raises:
            CommandError: if the connection was refused for another reason
              or the timeout expired.
        """
        poller = common_utils.Poller(
            interval=constants.SSH_READY_POLL_INTERVAL_SECONDS,
            timeout=timeout)
        logger.info(f'Waiting for ssh on {self.destination}')
        while True:
            output = await self.run('true', connect_timeout=5)
            if output.returncode == 0:
                logger.debug(f'ssh on {self.destination} is ready.')
                return
            if (output.returncode != SSH_CONNECTION_FAILURE_RETURNCODE or
                    poller.expired()):
                subprocess_utils.handle_returncode(
                    output.returncode,
                    'true',
                    f'Failed to connect to {self.destination} over ssh.',
                    stderr=output.stderr)
            logger.debug(f'ssh on {self.destination} not ready: '
                         f'{output.stderr.strip()}')
            await poller.wait()

    async def _transfer(self, argv: List[str], description: str) -> None:
        returncode, _, stderr = await subprocess_utils.run_async(argv)
        subprocess_utils.handle_returncode(returncode,
                                           shlex.join(argv),
                                           f'Failed to {description}.',
                                           stderr=stderr)

    async def _scp(self, source: str, target: str, description: str) -> None:
        with self._credential_files() as (key_path, known_hosts_path):
            argv = ['scp'] + self._ssh_options(key_path, known_hosts_path,
                                               None) + [source, target]
            await self._transfer(argv, description)

    async def push_file(self, source: str, target: str) -> None:
        """Copies a local file to the instance.

        Raises:
            CommandError: if the copy failed.
        """
        await self._scp(source, f'{self.destination}:{target}',
                        f'push {source} to {self.destination}:{target}')

    async def pull_file(self, source: str, target: str) -> None:
        """Copies a file from the instance to the local machine.

        Raises:
            CommandError: if the copy failed.
        """
        await self._scp(f'{self.destination}:{source}', target,
                        f'pull {self.destination}:{source} to {target}')

    async def _rsync(self, source: str, target: str, description: str) -> None:
        with self._credential_files() as (key_path, known_hosts_path):
            ssh_command = shlex.join(['ssh'] + self._ssh_options(
                key_path, known_hosts_path, None))
            argv = ['rsync', '--delete', '-ra', '-e', ssh_command, source,
                    target]
            await self._transfer(argv, description)

    async def push_rsync(self, source: str, target: str) -> None:
        """Mirrors a local path to the instance, deleting extra files.

        Raises:
            CommandError: if rsync failed.
        """
        await self._rsync(source, f'{self.destination}:{target}',
                          f'rsync {source} to {self.destination}:{target}')

    async def pull_rsync(self, source: str, target: str) -> None:
        """Mirrors a path of the instance locally, deleting extra files.

        Raises:
            CommandError: if rsync failed.
        """
        await self._rsync(f'{self.destination}:{source}', target,
                          f'rsync {self.destination}:{source} to {target}')

    def ssh_instructions(self) -> str:
        """Returns shell commands that open an interactive session.

        The snippet embeds the client private key.
        """
        key_file = f'throwaway-key-{self.ip}'
        known_hosts_file = f'throwaway-known-hosts-{self.ip}'
        private_key = self._client_private_key.strip()
        return (f'cat > {key_file} <<\'EOF\'\n'
                f'{private_key}\n'
                'EOF\n'
                f'chmod 600 {key_file}\n'
                f'echo {shlex.quote(self.known_hosts_line())} > '
                f'{known_hosts_file}\n'
                f'ssh -i {key_file} -o UserKnownHostsFile={known_hosts_file} '
                f'-o StrictHostKeyChecking=yes -p {self.port} '
                f'{self.destination}')


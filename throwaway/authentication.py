"""Module to pin the ssh host identity of every instance throwaway launches.

Instead of trusting the host key an instance presents on first connection,
throwaway generates an Ed25519 host keypair locally, injects it into the
instance through its boot script, and connects with strict host key checking
against a known_hosts file that only lists that key.

1. `generate_host_identity` creates the keypair (once per `Aws` object).
2. `build_boot_script` renders the user data that installs it as the sshd
   host key and restarts sshd.
3. `known_hosts_line` renders the single line the ssh client trusts.
"""
import base64
import binascii
import functools
import os
import struct
from typing import Tuple

from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.provision import common
from throwaway.provision import constants

logger = throwaway_logging.init_logger(__name__)

HOST_KEY_ALGORITHM = 'ssh-ed25519'
_HOST_PUBLIC_KEY_PATH = '/etc/ssh/ssh_host_ed25519_key.pub'
_HOST_PRIVATE_KEY_PATH = '/etc/ssh/ssh_host_ed25519_key'
_SSHD_CONFIG_PATH = '/etc/ssh/sshd_config'
_CLIENT_ALIVE_LINE = 'ClientAliveInterval 30'
_HEREDOC_DELIMITER = 'THROWAWAY_KEY_EOF'

_BOOT_SCRIPT_TEMPLATE = """\
#!/bin/bash
systemctl stop ssh
cat > {public_key_path} <<'{delimiter}'
{public_key}
{delimiter}
(umask 077 && cat > {private_key_path} <<'{delimiter}'
{private_key}
{delimiter}
)
chmod 600 {private_key_path}
grep -qxF '{client_alive}' {sshd_config} || \
echo '{client_alive}' >> {sshd_config}
systemctl start ssh
"""


def generate_host_identity() -> common.HostIdentity:
    """Generates a fresh Ed25519 host keypair.

    Raises:
        HostIdentityError: if the key could not be generated or encoded.
    """
    # Keep the import of the cryptography local to avoid expensive
    # third-party imports when not needed.
    # pylint: disable=import-outside-toplevel
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric import ed25519

    try:
        key = ed25519.Ed25519PrivateKey.generate()
        private_key = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption()).decode(
                'utf-8').strip()
        public_key = key.public_key().public_bytes(
            serialization.Encoding.OpenSSH,
            serialization.PublicFormat.OpenSSH).decode('utf-8').strip()
        public_key_bytes = base64.b64decode(public_key.split()[1])
    except (ValueError, TypeError, IndexError, binascii.Error) as e:
        raise exceptions.HostIdentityError(
            f'Failed to generate the ssh host identity: {e}') from e
    logger.debug('Generated a fresh ssh host identity.')
    return common.HostIdentity(public_key_bytes=public_key_bytes,
                               public_key=public_key,
                               private_key=private_key)


def build_boot_script(public_key: str, private_key: str) -> str:
    """Renders the user data script that installs the host keypair.

    The script is safe to run more than once: the key files are overwritten
    and the sshd keepalive option is only appended when missing.
    """
    for key in (public_key, private_key):
        if _HEREDOC_DELIMITER in key:
            raise exceptions.HostIdentityError(
                'Host key material must not contain the heredoc delimiter.')
    return _BOOT_SCRIPT_TEMPLATE.format(
        public_key_path=_HOST_PUBLIC_KEY_PATH,
        private_key_path=_HOST_PRIVATE_KEY_PATH,
        public_key=public_key.strip(),
        private_key=private_key.strip(),
        delimiter=_HEREDOC_DELIMITER,
        client_alive=_CLIENT_ALIVE_LINE,
        sshd_config=_SSHD_CONFIG_PATH)


def encoded_boot_script_size(script: str) -> int:
    return len(base64.b64encode(script.encode('utf-8')))


def check_boot_script_size(script: str) -> None:
    """Raises HostIdentityError if the script exceeds the user data limit."""
    size = encoded_boot_script_size(script)
    if size > constants.MAX_USER_DATA_BYTES:
        raise exceptions.HostIdentityError(
            f'Boot script is {size} bytes once base64 encoded, which exceeds '
            f'the EC2 user data limit of {constants.MAX_USER_DATA_BYTES} '
            'bytes.')


def _key_algorithm(public_key_bytes: bytes) -> str:
    # SSH wire format starts with the algorithm name as a length-prefixed
    # string.
    if len(public_key_bytes) < 4:
        raise exceptions.HostIdentityError('Truncated ssh public key.')
    (length,) = struct.unpack('>I', public_key_bytes[:4])
    algorithm = public_key_bytes[4:4 + length]
    if len(algorithm) != length:
        raise exceptions.HostIdentityError('Truncated ssh public key.')
    return algorithm.decode('ascii')


def known_hosts_line(address: str, public_key_bytes: bytes) -> str:
    """Formats a known_hosts entry: '<address> <algorithm> <base64 key>'."""
    algorithm = _key_algorithm(public_key_bytes)
    encoded = base64.b64encode(public_key_bytes).decode('ascii')
    return f'{address} {algorithm} {encoded}'


def parse_known_hosts_line(line: str) -> Tuple[str, bytes]:
    """Inverse of `known_hosts_line`: returns (address, public_key_bytes)."""
    parts = line.strip().split()
    if len(parts) < 3:
        raise exceptions.HostIdentityError(
            f'Malformed known_hosts line: {line!r}')
    address, algorithm, encoded = parts[:3]
    try:
        public_key_bytes = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise exceptions.HostIdentityError(
            f'Malformed known_hosts key for {address}: {e}') from e
    if _key_algorithm(public_key_bytes) != algorithm:
        raise exceptions.HostIdentityError(
            f'known_hosts algorithm {algorithm!r} does not match the key.')
    return address, public_key_bytes


def write_private_file(path: str, content: str) -> None:
    """Writes content to path, readable by the owner only."""
    with open(path,
              'w',
              encoding='utf-8',
              opener=functools.partial(os.open, mode=0o600)) as f:
        f.write(content)
        if not content.endswith('\n'):
            f.write('\n')

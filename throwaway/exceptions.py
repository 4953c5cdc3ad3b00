"""Exceptions."""
from typing import Optional

from throwaway.utils import env_options


class ThrowawayError(Exception):
    """Base class for all throwaway errors."""


class ProvisionError(ThrowawayError):
    """Raised when an unexpected provider error aborts provisioning.

    Resources created before the failure remain owned by the caller and are
    reclaimed by the next cleanup of the same scope.
    """


class SubnetNotFoundError(ProvisionError):
    """Raised when no subnet matches the configured subnet or zone."""


class AddressAssociationError(ProvisionError):
    """Raised when an elastic IP cannot be associated before the deadline.

    The instance exists at this point but is unreachable.
    """

    def __init__(self, allocation_id: str, network_interface_id: str,
                 timeout: float, reason: str) -> None:
        self.allocation_id = allocation_id
        self.network_interface_id = network_interface_id
        self.timeout = timeout
        super().__init__(
            f'Failed to associate elastic ip {allocation_id!r} with network '
            f'interface {network_interface_id!r} after retrying for '
            f'{timeout}s: {reason}')


class CloudUserIdentityError(ThrowawayError):
    """Raised when the AWS credentials or the caller identity are invalid."""


class ResourceDiscoveryError(ThrowawayError):
    """Raised when the resources owned by a cleanup scope cannot be listed."""


class KeyPairDeletionError(ThrowawayError):
    """Raised when a keypair deletion fails for a non-permission reason."""

    def __init__(self, key_pair_id: str, reason: str) -> None:
        self.key_pair_id = key_pair_id
        super().__init__(f'Failed to delete keypair {key_pair_id!r}: {reason}')


class HostIdentityError(ThrowawayError):
    """Raised when the ssh host identity cannot be generated or embedded."""


class InvalidConfigError(ThrowawayError):
    """Raised when the user config file does not match its schema."""


class CommandError(ThrowawayError):
    """Raised when a command fails.

    Args:
        returncode: The returncode of the command.
        command: The command that was run.
        error_message: The error message to print.
        detailed_reason: The stderr of the command.
    """

    def __init__(self, returncode: int, command: str, error_msg: str,
                 detailed_reason: Optional[str]) -> None:
        self.returncode = returncode
        self.command = command
        self.error_msg = error_msg
        self.detailed_reason = detailed_reason

        if not command:
            message = error_msg
        else:
            if (len(command) > 100 and
                    not env_options.Options.SHOW_DEBUG_INFO.get()):
                # Chunk the command to avoid overflow.
                command = command[:100] + '...'
            message = (f'Command {command} failed with return code '
                       f'{returncode}.\n{error_msg}\n{detailed_reason}')
        super().__init__(message)

"""Common data structures for provisioning"""
import dataclasses
import enum
import ipaddress
import typing
from typing import List, Optional

if typing.TYPE_CHECKING:
    from throwaway.utils import command_runner

# -------------------- input data model -------------------- #

ResourceId = str


class ResourceKind(enum.Enum):
    """Kinds of resources owned through tags.

    The values are the EC2 `resource-type` strings used by DescribeTags and
    TagSpecifications.
    """
    KEY_PAIR = 'key-pair'
    SECURITY_GROUP = 'security-group'
    SECURITY_GROUP_RULE = 'security-group-rule'
    PLACEMENT_GROUP = 'placement-group'
    ELASTIC_IP = 'elastic-ip'
    INSTANCE = 'instance'


class InstanceOs(enum.Enum):
    UBUNTU_20_04 = '20.04'
    UBUNTU_22_04 = '22.04'


@dataclasses.dataclass(frozen=True)
class CleanupResources:
    """Which resources a cleanup destroys.

    Use `CleanupResources.all_resources()` to destroy everything created by
    the current IAM principal, or `CleanupResources.with_app_tag(tag)` to
    only destroy resources created with the same tag. The tag lets several
    test suites share an account without destroying each other's machines.
    """
    app_tag: Optional[str] = None

    @classmethod
    def all_resources(cls) -> 'CleanupResources':
        return cls(app_tag=None)

    @classmethod
    def with_app_tag(cls, tag: str) -> 'CleanupResources':
        if not tag:
            raise ValueError('App tag must be a non-empty string.')
        return cls(app_tag=tag)


@dataclasses.dataclass
class Ec2InstanceDefinition:
    """Defines an instance to launch with `Aws.create_ec2_instance`.

    Setting network_interface_count above 1 makes the instance receive an
    elastic IP when public addresses are used: EC2 does not auto-assign a
    public IPv4 address to instances with several interfaces. Most accounts
    are limited to 5 elastic IPs at a time.
    """
    # EC2 instance type, e.g. 't2.micro' or 'm6g.large'.
    instance_type: str
    # Size of the root volume.
    volume_size_gb: int = 8
    network_interface_count: int = 1
    os: InstanceOs = InstanceOs.UBUNTU_22_04
    # Overrides the image resolved from `os` and the instance architecture.
    ami: Optional[str] = None

    def __post_init__(self):
        if self.network_interface_count < 1:
            raise ValueError('network_interface_count must be at least 1, '
                             f'got {self.network_interface_count}.')
        if self.volume_size_gb < 1:
            raise ValueError('volume_size_gb must be at least 1, '
                             f'got {self.volume_size_gb}.')


# -------------------- output data model -------------------- #


@dataclasses.dataclass(frozen=True)
class HostIdentity:
    """The ssh host keypair injected into an instance at boot."""
    # SSH wire format of the public key.
    public_key_bytes: bytes
    # OpenSSH text, e.g. 'ssh-ed25519 AAAA...'.
    public_key: str
    private_key: str = dataclasses.field(repr=False)


@dataclasses.dataclass(frozen=True)
class NetworkInterface:
    device_index: int
    private_ipv4: ipaddress.IPv4Address


@dataclasses.dataclass
class Ec2Instance:
    """A running instance and the channel to reach it."""
    instance_id: str
    # The address ssh connects to: public_ip when public addresses are used,
    # private_ip otherwise.
    connect_ip: ipaddress.IPv4Address
    public_ip: Optional[ipaddress.IPv4Address]
    private_ip: ipaddress.IPv4Address
    network_interfaces: List[NetworkInterface]
    client_private_key: str = dataclasses.field(repr=False)
    host_public_key: str = dataclasses.field(repr=False)
    command_runner: 'command_runner.SSHCommandRunner' = dataclasses.field(
        repr=False)

    async def ssh_shell(self, command: str, check: bool = True):
        """Runs a shell command on the instance and returns its output."""
        return await self.command_runner.shell(command, check=check)

    def ssh_instructions(self) -> str:
        """Returns a copy-pasteable snippet for an interactive ssh session."""
        return self.command_runner.ssh_instructions()

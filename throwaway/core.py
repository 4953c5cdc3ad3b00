"""Throwaway: construct an `Aws` to create and clean up EC2 instances.

Example:

    aws = await Aws.builder(CleanupResources.with_app_tag('my-bench')).build()
    try:
        instance = await aws.create_ec2_instance(
            Ec2InstanceDefinition('t2.micro', volume_size_gb=20))
        output = await instance.ssh_shell('lsb_release -a')
    finally:
        await aws.cleanup_resources()

Building an `Aws` first destroys every resource left behind in the same
cleanup scope, so a crashed run is cleaned up by the next one.
"""
import dataclasses
from typing import Optional

from throwaway import authentication
from throwaway import exceptions
from throwaway import throwaway_config
from throwaway import throwaway_logging
from throwaway.adaptors import aws
from throwaway.provision import common
from throwaway.provision import constants
from throwaway.provision.aws import cleanup as cleanup_lib
from throwaway.provision.aws import iam
from throwaway.provision.aws import instance as instance_lib
from throwaway.provision.aws import tags as tags_lib
from throwaway.utils import common_utils

logger = throwaway_logging.init_logger(__name__)


def _client(service_name: str):
    try:
        return aws.client(service_name, region_name=constants.REGION)
    except aws.botocore_exceptions().BotoCoreError as e:
        raise exceptions.CloudUserIdentityError(
            f'Failed to create an AWS {service_name} client: '
            f'{common_utils.format_exception(e, use_bracket=True)}') from e


def _ec2_client():
    return _client('ec2')


def _sts_client():
    return _client('sts')


async def _resolve_tags(cleanup: common.CleanupResources) -> tags_lib.Tags:
    user_name = await iam.user_name(_sts_client())
    return tags_lib.Tags(user_name=user_name, cleanup=cleanup)


@dataclasses.dataclass(frozen=True)
class AwsBuilder:
    """Configures an `Aws`. Every setter returns a new builder.

    Defaults come from the `aws:` section of ~/.throwaway/config.yaml and
    succeed for an IAM user with sufficient access and an unmodified default
    VPC. All resources are created in us-east-1c, in a single spread
    placement group.
    """
    cleanup: common.CleanupResources
    # True: connect to the public ip of instances. The subnet must map public
    # ips on launch, and instances with several network interfaces get an
    # elastic ip. False: connect to the private ip, which requires running
    # inside the VPC or reaching it through a VPN.
    public_addresses: bool = True
    vpc_id: Optional[str] = None
    subnet_id: Optional[str] = None
    security_group_id: Optional[str] = None
    # Also wait for the public ip a MapPublicIpOnLaunch subnet assigns when
    # public addresses are not used.
    wait_for_auto_assigned_public_ip: bool = True

    @classmethod
    def from_config(cls, cleanup: common.CleanupResources) -> 'AwsBuilder':
        return cls(
            cleanup=cleanup,
            public_addresses=throwaway_config.get_nested(
                ('aws', 'use_public_addresses'), True),
            vpc_id=throwaway_config.get_nested(('aws', 'vpc_id'), None),
            subnet_id=throwaway_config.get_nested(('aws', 'subnet_id'), None),
            security_group_id=throwaway_config.get_nested(
                ('aws', 'security_group_id'), None),
            wait_for_auto_assigned_public_ip=throwaway_config.get_nested(
                ('aws', 'wait_for_auto_assigned_public_ip'), True))

    def use_public_addresses(self, use_public_addresses: bool) -> 'AwsBuilder':
        return dataclasses.replace(self, public_addresses=use_public_addresses)

    def use_vpc_id(self, vpc_id: Optional[str]) -> 'AwsBuilder':
        """None puts every resource in the default VPC."""
        return dataclasses.replace(self, vpc_id=vpc_id)

    def use_subnet_id(self, subnet_id: Optional[str]) -> 'AwsBuilder':
        """None uses the default subnet of us-east-1c."""
        return dataclasses.replace(self, subnet_id=subnet_id)

    def use_security_group_id(self,
                              security_group_id: Optional[str]) -> 'AwsBuilder':
        """None creates one security group shared by all instances.

        The created group allows ssh from the internet, all outbound
        traffic, and all traffic between its members.
        """
        return dataclasses.replace(self, security_group_id=security_group_id)

    def wait_for_public_ip_on_launch(self, wait: bool) -> 'AwsBuilder':
        return dataclasses.replace(self, wait_for_auto_assigned_public_ip=wait)

    async def build(self) -> 'Aws':
        """Cleans up the scope, then creates the shared resources."""
        client = _ec2_client()
        tags = await _resolve_tags(self.cleanup)

        logger.info(f'Cleaning up leftover resources of {tags.user_name!r}')
        # Cleanup any resources that previously failed to be cleaned up.
        await cleanup_lib.cleanup_resources(client, tags)

        host_identity = authentication.generate_host_identity()
        shared = await instance_lib.setup_shared_resources(
            client,
            tags,
            key_name=common_utils.make_resource_name(tags.user_name),
            security_group_name=common_utils.make_resource_name(
                tags.user_name),
            placement_group_name=common_utils.make_resource_name(
                tags.user_name),
            vpc_id=self.vpc_id,
            subnet_id=self.subnet_id,
            security_group_id=self.security_group_id)
        return Aws(client=client,
                   tags=tags,
                   shared=shared,
                   host_identity=host_identity,
                   use_public_addresses=self.public_addresses,
                   wait_for_auto_assigned_public_ip=self.
                   wait_for_auto_assigned_public_ip)


class Aws:
    """Creates EC2 instances and cleans them up."""

    def __init__(self, *, client, tags: tags_lib.Tags,
                 shared: instance_lib.SharedResources,
                 host_identity: common.HostIdentity, use_public_addresses: bool,
                 wait_for_auto_assigned_public_ip: bool) -> None:
        self._client = client
        self._tags = tags
        self._shared = shared
        self._host_identity = host_identity
        self._use_public_addresses = use_public_addresses
        self._wait_for_auto_assigned_public_ip = (
            wait_for_auto_assigned_public_ip)

    @staticmethod
    def builder(cleanup: common.CleanupResources) -> AwsBuilder:
        """Returns an `AwsBuilder` that will build a new `Aws`.

        Before the `Aws` is built, every preexisting resource in the
        `cleanup` scope is destroyed. The same scope is used by
        `Aws.cleanup_resources`.
        """
        return AwsBuilder.from_config(cleanup)

    @property
    def user_name(self) -> str:
        return self._tags.user_name

    @property
    def shared_resources(self) -> instance_lib.SharedResources:
        return self._shared

    async def create_ec2_instance(
            self,
            definition: common.Ec2InstanceDefinition,
            ssh_timeout: Optional[float] = None) -> common.Ec2Instance:
        """Creates a new EC2 instance as defined by `definition`.

        Returns once sshd on the instance accepts the pinned host key. ssh
        connection failures are retried for `ssh_timeout` seconds; the
        default of None retries forever, so a host that never presents the
        injected key blocks this call until it is cancelled.
        """
        return await instance_lib.create_ec2_instance(
            self._client,
            definition,
            shared=self._shared,
            tags=self._tags,
            host_identity=self._host_identity,
            use_public_addresses=self._use_public_addresses,
            wait_for_auto_assigned_public_ip=self.
            _wait_for_auto_assigned_public_ip,
            ssh_timeout=ssh_timeout)

    async def cleanup_resources(self) -> None:
        """Destroys every resource in the scope given to the builder."""
        await cleanup_lib.cleanup_resources(self._client, self._tags)

    @staticmethod
    async def cleanup_resources_static(
            cleanup: common.CleanupResources) -> None:
        """Destroys every resource in `cleanup` without building an `Aws`."""
        client = _ec2_client()
        tags = await _resolve_tags(cleanup)
        await cleanup_lib.cleanup_resources(client, tags)

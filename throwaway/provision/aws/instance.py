"""AWS instance provisioning.

Provisioning happens in two phases:

1. `setup_shared_resources` creates, once per `Aws` object and concurrently,
   the client keypair, the security group, the spread placement group, and
   resolves the subnet.
2. `create_ec2_instance` launches one instance into those resources, gives it
   an elastic IP when needed, and waits until it is reachable.

A failure part way leaves tagged resources behind. They are reclaimed by the
next cleanup of the same scope.
"""
import asyncio
import dataclasses
import ipaddress
from typing import Any, Callable, Dict, List, Optional, TypeVar

from throwaway import authentication
from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.adaptors import aws
from throwaway.provision import common
from throwaway.provision import constants
from throwaway.provision.aws import cpu_arch
from throwaway.provision.aws import tags as tags_lib
from throwaway.utils import command_runner
from throwaway.utils import common_utils
from throwaway.utils import context_utils

logger = throwaway_logging.init_logger(__name__)

_T = TypeVar('_T')

# ======================== About multiple network interfaces ==================
# EC2 refuses to auto-assign a public IPv4 address to an instance launched with
# more than one network interface, and an instance-level security group cannot
# be combined with explicit interface specs. Such instances get explicit
# per-interface specs and, when public addresses are used, an elastic IP on
# the primary interface.
# https://docs.aws.amazon.com/AWSEC2/latest/UserGuide/using-eni.html


@dataclasses.dataclass(frozen=True)
class NetworkPlacement:
    subnet_id: str
    # Whether the subnet assigns a public IP to instances at launch.
    map_public_ip_on_launch: bool
    availability_zone: str = constants.AVAILABILITY_ZONE


@dataclasses.dataclass(frozen=True)
class SharedResources:
    """Resources shared by every instance of one `Aws` object."""
    key_name: str
    client_private_key: str = dataclasses.field(repr=False)
    security_group_id: str
    placement_group_name: str
    placement: NetworkPlacement


async def _ec2_call(operation: str, fn: Callable[..., _T], **kwargs) -> _T:
    """Runs a blocking EC2 call in a worker thread.

    Raises:
        ProvisionError: on any provider error.
    """
    try:
        return await context_utils.to_thread(fn, **kwargs)
    except aws.botocore_exceptions().ClientError as e:
        raise exceptions.ProvisionError(
            f'{operation} failed: {common_utils.format_exception(e)}') from e


async def create_key_pair(client, tags: tags_lib.Tags, name: str) -> str:
    """Creates the ed25519 client keypair and returns its private key."""
    response = await _ec2_call(
        'CreateKeyPair',
        client.create_key_pair,
        KeyName=name,
        KeyType='ed25519',
        TagSpecifications=tags.create_tags(common.ResourceKind.KEY_PAIR,
                                           constants.DEFAULT_RESOURCE_LABEL))
    logger.info(f'Created keypair {name}')
    return response['KeyMaterial']


async def _create_ingress_rule_internal(client, tags: tags_lib.Tags,
                                        group_id: str) -> None:
    await _ec2_call('AuthorizeSecurityGroupIngress',
                    client.authorize_security_group_ingress,
                    GroupId=group_id,
                    IpPermissions=[{
                        'IpProtocol': '-1',
                        'UserIdGroupPairs': [{
                            'GroupId': group_id
                        }],
                    }],
                    TagSpecifications=tags.create_tags(
                        common.ResourceKind.SECURITY_GROUP_RULE,
                        'within throwaway SG'))
    logger.info('Created security group rule - internal')


async def _create_ingress_rule_ssh(client, tags: tags_lib.Tags,
                                   group_id: str) -> None:
    await _ec2_call('AuthorizeSecurityGroupIngress',
                    client.authorize_security_group_ingress,
                    GroupId=group_id,
                    IpPermissions=[{
                        'IpProtocol': 'tcp',
                        'FromPort': constants.SSH_PORT,
                        'ToPort': constants.SSH_PORT,
                        'IpRanges': [{
                            'CidrIp': '0.0.0.0/0'
                        }],
                    }],
                    TagSpecifications=tags.create_tags(
                        common.ResourceKind.SECURITY_GROUP_RULE, 'ssh'))
    logger.info('Created security group rule - ssh')


async def create_security_group(client, tags: tags_lib.Tags, name: str,
                                vpc_id: Optional[str],
                                security_group_id: Optional[str]) -> str:
    """Returns the security group every instance joins.

    A caller supplied group is used as is. Otherwise a group is created that
    allows ssh from anywhere and all traffic between its members. Outbound
    traffic is allowed by the default egress rule of a new group.
    """
    if security_group_id is not None:
        logger.debug(f'Using existing security group {security_group_id}')
        return security_group_id
    kwargs: Dict[str, Any] = {
        'GroupName': name,
        'Description': 'throwaway security group',
        'TagSpecifications': tags.create_tags(
            common.ResourceKind.SECURITY_GROUP,
            constants.DEFAULT_RESOURCE_LABEL),
    }
    if vpc_id is not None:
        kwargs['VpcId'] = vpc_id
    response = await _ec2_call('CreateSecurityGroup',
                               client.create_security_group, **kwargs)
    group_id = response['GroupId']
    logger.info(f'Created security group {group_id}')
    await asyncio.gather(
        _create_ingress_rule_internal(client, tags, group_id),
        _create_ingress_rule_ssh(client, tags, group_id))
    return group_id


async def create_placement_group(client, tags: tags_lib.Tags,
                                 name: str) -> None:
    # Spread places each instance on distinct hardware.
    # https://docs.aws.amazon.com/AWSEC2/latest/UserGuide/placement-groups.html
    await _ec2_call('CreatePlacementGroup',
                    client.create_placement_group,
                    GroupName=name,
                    Strategy='spread',
                    TagSpecifications=tags.create_tags(
                        common.ResourceKind.PLACEMENT_GROUP,
                        constants.DEFAULT_RESOURCE_LABEL))
    logger.info(f'Created placement group {name}')


async def get_subnet(client, subnet_id: Optional[str]) -> NetworkPlacement:
    """Resolves the given subnet, or the default subnet of the zone."""
    if subnet_id is not None:
        filters = [{'Name': 'subnet-id', 'Values': [subnet_id]}]
    else:
        filters = [
            {
                'Name': 'default-for-az',
                'Values': ['true']
            },
            {
                'Name': 'availability-zone',
                'Values': [constants.AVAILABILITY_ZONE]
            },
        ]
    response = await _ec2_call('DescribeSubnets',
                               client.describe_subnets,
                               Filters=filters)
    subnets = response.get('Subnets', [])
    if not subnets:
        target = (subnet_id if subnet_id is not None else
                  f'default subnet of {constants.AVAILABILITY_ZONE}')
        raise exceptions.SubnetNotFoundError(f'Subnet not found: {target}')
    subnet = subnets[-1]
    return NetworkPlacement(
        subnet_id=subnet['SubnetId'],
        map_public_ip_on_launch=bool(subnet.get('MapPublicIpOnLaunch', False)),
        availability_zone=subnet.get('AvailabilityZone',
                                     constants.AVAILABILITY_ZONE))


async def setup_shared_resources(client, tags: tags_lib.Tags, *, key_name: str,
                                 security_group_name: str,
                                 placement_group_name: str,
                                 vpc_id: Optional[str],
                                 subnet_id: Optional[str],
                                 security_group_id: Optional[str]
                                ) -> SharedResources:
    """Creates the resources shared by all instances, concurrently.

    The first failure propagates once every task finished.
    """
    results = await asyncio.gather(
        create_key_pair(client, tags, key_name),
        create_security_group(client, tags, security_group_name, vpc_id,
                              security_group_id),
        create_placement_group(client, tags, placement_group_name),
        get_subnet(client, subnet_id),
        return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    client_private_key, group_id, _, placement = results
    return SharedResources(key_name=key_name,
                           client_private_key=client_private_key,
                           security_group_id=group_id,
                           placement_group_name=placement_group_name,
                           placement=placement)


def image_id_for(definition: common.Ec2InstanceDefinition) -> str:
    if definition.ami is not None:
        return definition.ami
    arch = cpu_arch.get_arch_of_instance_type(definition.instance_type)
    return constants.UBUNTU_IMAGE_SSM_PARAMETER.format(
        version=definition.os.value, arch=arch.ubuntu_arch_identifier())


def build_run_instances_params(definition: common.Ec2InstanceDefinition,
                               shared: SharedResources, tags: tags_lib.Tags,
                               user_data: str) -> Dict[str, Any]:
    """Returns the RunInstances arguments for one instance.

    `user_data` is the plain boot script; botocore base64 encodes it.
    """
    params: Dict[str, Any] = {
        'ImageId': image_id_for(definition),
        'InstanceType': definition.instance_type,
        'MinCount': 1,
        'MaxCount': 1,
        'Placement': {
            'GroupName': shared.placement_group_name,
            'AvailabilityZone': constants.AVAILABILITY_ZONE,
        },
        'BlockDeviceMappings': [{
            'DeviceName': constants.ROOT_DEVICE_NAME,
            'Ebs': {
                'DeleteOnTermination': True,
                'VolumeSize': definition.volume_size_gb,
                'VolumeType': constants.ROOT_VOLUME_TYPE,
            },
        }],
        'KeyName': shared.key_name,
        'UserData': user_data,
        'TagSpecifications': tags.create_tags(common.ResourceKind.INSTANCE,
                                              constants.DEFAULT_RESOURCE_LABEL),
    }
    if definition.network_interface_count == 1:
        params['SubnetId'] = shared.placement.subnet_id
        params['SecurityGroupIds'] = [shared.security_group_id]
    else:
        params['NetworkInterfaces'] = [
            {
                'DeviceIndex': i,
                'Groups': [shared.security_group_id],
                # Must be false when launching with several interfaces.
                'AssociatePublicIpAddress': False,
                'SubnetId': shared.placement.subnet_id,
                'Description': str(i),
                'DeleteOnTermination': True,
            } for i in range(definition.network_interface_count)
        ]
    return params


def public_ip_expected(use_public_addresses: bool,
                       wait_for_auto_assigned_public_ip: bool,
                       placement: NetworkPlacement,
                       network_interface_count: int = 1) -> bool:
    if use_public_addresses:
        return True
    # The subnet mapping only applies to single interface launches.
    return (wait_for_auto_assigned_public_ip and
            placement.map_public_ip_on_launch and network_interface_count == 1)


def _network_interfaces_of(
        instance: Dict[str, Any]) -> List[common.NetworkInterface]:
    interfaces = []
    for interface in instance.get('NetworkInterfaces', []):
        interfaces.append(
            common.NetworkInterface(
                device_index=interface['Attachment']['DeviceIndex'],
                private_ipv4=ipaddress.IPv4Address(
                    interface['PrivateIpAddress'])))
    return sorted(interfaces, key=lambda x: x.device_index)


def _primary_network_interface_id(instance: Dict[str, Any]) -> str:
    for interface in instance.get('NetworkInterfaces', []):
        if interface['Attachment']['DeviceIndex'] == 0:
            return interface['NetworkInterfaceId']
    raise exceptions.ProvisionError(
        f'Instance {instance["InstanceId"]} has no primary network interface.')


async def allocate_elastic_ip(client, tags: tags_lib.Tags) -> Dict[str, Any]:
    response = await _ec2_call('AllocateAddress',
                               client.allocate_address,
                               Domain='vpc',
                               TagSpecifications=tags.create_tags(
                                   common.ResourceKind.ELASTIC_IP,
                                   constants.DEFAULT_RESOURCE_LABEL))
    logger.info(f'Allocated elastic ip {response["PublicIp"]} '
                f'({response["AllocationId"]})')
    return response


async def associate_elastic_ip(client, allocation_id: str,
                               network_interface_id: str) -> None:
    """Associates the elastic IP with the interface, retrying until deadline.

    Association fails while the instance is still pending, so every error is
    retried until the deadline.

    Raises:
        AddressAssociationError: if the association did not succeed in time.
    """
    poller = common_utils.Poller(
        interval=constants.ASSOCIATE_ADDRESS_RETRY_INTERVAL_SECONDS,
        timeout=constants.ASSOCIATE_ADDRESS_TIMEOUT_SECONDS)
    while True:
        try:
            await context_utils.to_thread(
                client.associate_address,
                AllocationId=allocation_id,
                NetworkInterfaceId=network_interface_id)
            logger.debug(f'Associated elastic ip {allocation_id} with '
                         f'{network_interface_id}')
            return
        except aws.botocore_exceptions().ClientError as e:
            if poller.expired():
                raise exceptions.AddressAssociationError(
                    allocation_id, network_interface_id,
                    constants.ASSOCIATE_ADDRESS_TIMEOUT_SECONDS,
                    common_utils.format_exception(e)) from e
            logger.debug(f'AssociateAddress not ready yet: '
                         f'{common_utils.boto_error_code(e)}, retrying.')
        await poller.wait()


async def wait_for_addresses(
        client, instance_id: str, expect_public_ip: bool,
        public_ip: Optional[str]) -> Dict[str, Optional[str]]:
    """Polls DescribeInstances until the instance has its addresses.

    Returns a dict with 'private_ip' and 'public_ip'. The poll has no
    deadline. Only errors in TRANSIENT_DESCRIBE_INSTANCE_ERRORS are retried.
    """
    if expect_public_ip:
        logger.info('Waiting for instance private ip and public ip to be '
                    'assigned')
    else:
        logger.info('Waiting for instance private ip to be assigned')
    poller = common_utils.Poller(
        interval=constants.INSTANCE_POLL_INTERVAL_SECONDS)
    private_ip = None
    while (expect_public_ip and public_ip is None) or private_ip is None:
        # A fresh instance is never ready immediately.
        await poller.wait()
        try:
            response = await context_utils.to_thread(
                client.describe_instances, InstanceIds=[instance_id])
        except aws.botocore_exceptions().ClientError as e:
            code = common_utils.boto_error_code(e)
            if code in constants.TRANSIENT_DESCRIBE_INSTANCE_ERRORS:
                logger.debug(f'Instance {instance_id} not visible yet.')
                continue
            raise exceptions.ProvisionError(
                f'DescribeInstances failed for {instance_id}: '
                f'{common_utils.format_exception(e)}') from e
        for reservation in response.get('Reservations', []):
            for instance in reservation.get('Instances', []):
                if public_ip is None:
                    public_ip = instance.get('PublicIpAddress')
                private_ip = instance.get('PrivateIpAddress')
    return {'private_ip': private_ip, 'public_ip': public_ip}


async def create_ec2_instance(
        client,
        definition: common.Ec2InstanceDefinition,
        *,
        shared: SharedResources,
        tags: tags_lib.Tags,
        host_identity: common.HostIdentity,
        use_public_addresses: bool,
        wait_for_auto_assigned_public_ip: bool = True,
        ssh_timeout: Optional[float] = None) -> common.Ec2Instance:
    """Launches one instance and returns a handle once ssh accepts it."""
    user_data = authentication.build_boot_script(host_identity.public_key,
                                                 host_identity.private_key)
    authentication.check_boot_script_size(user_data)

    # Elastic IPs are a limited resource, only allocate one when needed.
    elastic_ip = None
    if use_public_addresses and definition.network_interface_count > 1:
        elastic_ip = await allocate_elastic_ip(client, tags)

    params = build_run_instances_params(definition, shared, tags, user_data)
    response = await _ec2_call('RunInstances', client.run_instances, **params)
    instance = response['Instances'][0]
    instance_id = instance['InstanceId']
    logger.info(f'Launched instance {instance_id} '
                f'({definition.instance_type})')
    network_interfaces = _network_interfaces_of(instance)

    public_ip = None
    if elastic_ip is not None:
        await associate_elastic_ip(client, elastic_ip['AllocationId'],
                                   _primary_network_interface_id(instance))
        public_ip = elastic_ip['PublicIp']

    addresses = await wait_for_addresses(
        client, instance_id,
        public_ip_expected(use_public_addresses,
                           wait_for_auto_assigned_public_ip, shared.placement,
                           definition.network_interface_count),
        public_ip)
    private_ip = ipaddress.IPv4Address(addresses['private_ip'])
    public_ip_address = (ipaddress.IPv4Address(addresses['public_ip'])
                         if addresses['public_ip'] is not None else None)
    if use_public_addresses:
        if public_ip_address is None:
            raise exceptions.ProvisionError(
                f'Instance {instance_id} has no public ip although public '
                'addresses are in use.')
        connect_ip = public_ip_address
    else:
        connect_ip = private_ip
    logger.info(f'Created EC2 instance at public:{public_ip_address} '
                f'private:{private_ip}')

    runner = command_runner.SSHCommandRunner(
        ip=str(connect_ip),
        ssh_user=constants.SSH_USER,
        client_private_key=shared.client_private_key,
        host_public_key_bytes=host_identity.public_key_bytes)
    await runner.wait_for_ssh(timeout=ssh_timeout)
    return common.Ec2Instance(instance_id=instance_id,
                              connect_ip=connect_ip,
                              public_ip=public_ip_address,
                              private_ip=private_ip,
                              network_interfaces=network_interfaces,
                              client_private_key=shared.client_private_key,
                              host_public_key=host_identity.public_key,
                              command_runner=runner)

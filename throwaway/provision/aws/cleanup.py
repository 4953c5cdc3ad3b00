"""Reclaims every AWS resource owned by a cleanup scope.

Resources are found through their ownership tags only, so this also destroys
whatever a crashed process left behind. The order matters:

1. elastic IPs, which are billed while allocated;
2. instances, which hold the security group and placement group;
3. security groups, placement groups and keypairs, concurrently.

Security groups and placement groups still in use by a terminating instance
fail to delete. They are logged and left for a later cleanup.
"""
import asyncio
from typing import List

from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.adaptors import aws
from throwaway.provision import common
from throwaway.provision import constants
from throwaway.provision.aws import tags as tags_lib
from throwaway.utils import common_utils
from throwaway.utils import context_utils

logger = throwaway_logging.init_logger(__name__)


async def _release_address(client, allocation_id: str) -> None:
    try:
        await context_utils.to_thread(client.release_address,
                                      AllocationId=allocation_id)
    except aws.botocore_exceptions().ClientError as e:
        if (common_utils.boto_error_code(e) !=
                constants.ADDRESS_IN_USE_ERROR_CODE):
            raise
        # The instance it points to is still alive, detach it first.
        response = await context_utils.to_thread(
            client.describe_addresses, AllocationIds=[allocation_id])
        for address in response.get('Addresses', []):
            association_id = address.get('AssociationId')
            if association_id is not None:
                await context_utils.to_thread(client.disassociate_address,
                                              AssociationId=association_id)
        await context_utils.to_thread(client.release_address,
                                      AllocationId=allocation_id)


async def release_elastic_ips(client, tags: tags_lib.Tags) -> None:
    for allocation_id in await tags_lib.discover(
            client, tags, common.ResourceKind.ELASTIC_IP):
        try:
            await _release_address(client, allocation_id)
        except aws.botocore_exceptions().ClientError as e:
            logger.error(f'Failed to release elastic ip {allocation_id!r}, '
                         'it will be released by a future cleanup: '
                         f'{common_utils.format_exception(e)}')
        else:
            logger.info(f'elastic ip {allocation_id!r} was successfully '
                        'released')


async def terminate_instances(client, tags: tags_lib.Tags) -> None:
    logger.info('Terminating instances')
    instance_ids = await tags_lib.discover(client, tags,
                                           common.ResourceKind.INSTANCE)
    if not instance_ids:
        return
    try:
        response = await context_utils.to_thread(client.terminate_instances,
                                                 InstanceIds=instance_ids)
    except aws.botocore_exceptions().ClientError as e:
        logger.error(f'Failed to terminate instances {instance_ids}, they '
                     'will be terminated by a future cleanup: '
                     f'{common_utils.format_exception(e)}')
        return
    for result in response.get('TerminatingInstances', []):
        logger.info(f'Instance {result["InstanceId"]!r} '
                    f'{result["PreviousState"]["Name"]!r} -> '
                    f'{result["CurrentState"]["Name"]!r}')


async def delete_security_groups(client, tags: tags_lib.Tags) -> None:
    for group_id in await tags_lib.discover(client, tags,
                                            common.ResourceKind.SECURITY_GROUP):
        try:
            await context_utils.to_thread(client.delete_security_group,
                                          GroupId=group_id)
        except aws.botocore_exceptions().ClientError as e:
            logger.info(f'security group {group_id!r} could not be deleted, '
                        'this will get cleaned up eventually on a future '
                        f'throwaway cleanup: {e}')
        else:
            logger.info(f'security group {group_id!r} was successfully '
                        'deleted')


async def delete_placement_groups(client, tags: tags_lib.Tags) -> None:
    group_ids = await tags_lib.discover(client, tags,
                                        common.ResourceKind.PLACEMENT_GROUP)
    if not group_ids:
        return
    # Placement groups can not be deleted by id, look up their names.
    try:
        response = await context_utils.to_thread(
            client.describe_placement_groups, GroupIds=group_ids)
    except aws.botocore_exceptions().ClientError as e:
        logger.error(f'Failed to look up placement groups {group_ids}, they '
                     'will be deleted by a future cleanup: '
                     f'{common_utils.format_exception(e)}')
        return
    for group in response.get('PlacementGroups', []):
        name = group['GroupName']
        try:
            await context_utils.to_thread(client.delete_placement_group,
                                          GroupName=name)
        except aws.botocore_exceptions().ClientError as e:
            logger.info(f'placement group {name!r} could not be deleted, '
                        'this will get cleaned up eventually on a future '
                        f'throwaway cleanup: {e}')
        else:
            logger.info(f'placement group {name!r} was successfully deleted')


async def delete_keypairs(client, tags: tags_lib.Tags) -> None:
    """Deletes every owned keypair.

    Raises:
        KeyPairDeletionError: on any error other than a missing permission.
          A missing permission is logged and skips the remaining keypairs,
          since they would fail the same way.
    """
    for key_pair_id in await tags_lib.discover(client, tags,
                                               common.ResourceKind.KEY_PAIR):
        try:
            await context_utils.to_thread(client.delete_key_pair,
                                          KeyPairId=key_pair_id)
        except aws.botocore_exceptions().ClientError as e:
            if (common_utils.boto_error_code(e) ==
                    constants.UNAUTHORIZED_ERROR_CODE):
                logger.error('Did not have permissions to delete keypair '
                             f'{key_pair_id!r}, skipping all other keypairs '
                             f'since they will also fail: {e}')
                return
            raise exceptions.KeyPairDeletionError(
                key_pair_id, common_utils.format_exception(e)) from e
        logger.info(f'keypair {key_pair_id!r} was successfully deleted')


async def cleanup_resources(client, tags: tags_lib.Tags) -> None:
    """Destroys every resource owned by the scope of `tags`.

    Safe to run repeatedly.

    Raises:
        ResourceDiscoveryError: if the owned resources could not be listed.
        KeyPairDeletionError: if a keypair could not be deleted. Raised after
          security groups and placement groups were processed.
    """
    scope = (f'app tag {tags.cleanup.app_tag!r}'
             if tags.cleanup.app_tag is not None else 'all resources')
    logger.debug(f'Cleaning up {scope} of {tags.user_name!r}')
    await release_elastic_ips(client, tags)
    await terminate_instances(client, tags)
    results: List = await asyncio.gather(delete_security_groups(client, tags),
                                         delete_placement_groups(client, tags),
                                         delete_keypairs(client, tags),
                                         return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result

"""Ownership tags for AWS resources.

Every resource throwaway creates carries a `throwaway:user=<principal>` tag
and, when the caller scoped itself with an app tag, a `throwaway:app=<tag>`
tag. Cleanup discovers owned resources purely from these tags, so a process
can reclaim whatever a previously crashed process left behind.
"""
import asyncio
import dataclasses
from typing import Any, Dict, List, Optional, Sequence

from throwaway import exceptions
from throwaway.adaptors import aws
from throwaway.provision import common
from throwaway.provision import constants
from throwaway.utils import common_utils
from throwaway.utils import context_utils


def owned_resource_ids(
        user_ids: Sequence[str],
        app_ids: Optional[Sequence[str]]) -> List[common.ResourceId]:
    """Returns the ids owned by the cleanup scope.

    With no app tag in scope (app_ids is None) every id tagged with the user
    tag is owned. Otherwise only ids carrying both tags are. The order of
    user_ids is kept and duplicates are dropped.
    """
    seen = set()
    app_id_set = None if app_ids is None else set(app_ids)
    owned = []
    for resource_id in user_ids:
        if resource_id in seen:
            continue
        if app_id_set is not None and resource_id not in app_id_set:
            continue
        seen.add(resource_id)
        owned.append(resource_id)
    return owned


@dataclasses.dataclass(frozen=True)
class Tags:
    user_name: str
    cleanup: common.CleanupResources

    def create_tags(self, resource_kind: common.ResourceKind,
                    name: str) -> List[Dict[str, Any]]:
        """Returns the TagSpecifications for one resource."""
        tags = [
            {
                'Key': constants.TAG_NAME_KEY,
                'Value': name
            },
            {
                'Key': constants.TAG_USER_KEY,
                'Value': self.user_name
            },
        ]
        if self.cleanup.app_tag is not None:
            tags.append({
                'Key': constants.TAG_APP_KEY,
                'Value': self.cleanup.app_tag
            })
        return [{'ResourceType': resource_kind.value, 'Tags': tags}]


def _describe_tag_resource_ids(client, resource_kind: common.ResourceKind,
                               key: str, value: str) -> List[str]:
    paginator = client.get_paginator('describe_tags')
    resource_ids = []
    for page in paginator.paginate(Filters=[
        {
            'Name': 'resource-type',
            'Values': [resource_kind.value]
        },
        {
            'Name': 'key',
            'Values': [key]
        },
        {
            'Name': 'value',
            'Values': [value]
        },
    ]):
        for tag in page.get('Tags', []):
            resource_id = tag.get('ResourceId')
            if resource_id is not None:
                resource_ids.append(resource_id)
    return resource_ids


async def fetch_user_tag_ids(client, tags: Tags,
                             resource_kind: common.ResourceKind) -> List[str]:
    return await context_utils.to_thread(_describe_tag_resource_ids, client,
                                         resource_kind, constants.TAG_USER_KEY,
                                         tags.user_name)


async def fetch_app_tag_ids(
        client, tags: Tags,
        resource_kind: common.ResourceKind) -> Optional[List[str]]:
    if tags.cleanup.app_tag is None:
        return None
    return await context_utils.to_thread(_describe_tag_resource_ids, client,
                                         resource_kind, constants.TAG_APP_KEY,
                                         tags.cleanup.app_tag)


async def discover(client, tags: Tags,
                   resource_kind: common.ResourceKind) -> List[str]:
    """Returns the ids of all resources of one kind owned by the scope.

    Raises:
        ResourceDiscoveryError: if DescribeTags fails.
    """
    try:
        user_ids, app_ids = await asyncio.gather(
            fetch_user_tag_ids(client, tags, resource_kind),
            fetch_app_tag_ids(client, tags, resource_kind))
    except (aws.botocore_exceptions().ClientError,
            aws.botocore_exceptions().BotoCoreError) as e:
        raise exceptions.ResourceDiscoveryError(
            f'Failed to list the {resource_kind.value} resources of '
            f'{tags.user_name!r}: {common_utils.format_exception(e)}') from e
    return owned_resource_ids(user_ids, app_ids)

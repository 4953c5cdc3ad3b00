"""Tests for throwaway/provision/aws/cleanup.py against a fake EC2 client."""
from unittest import mock

import pytest

from throwaway import authentication
from throwaway import exceptions
from throwaway.provision import common
from throwaway.provision.aws import cleanup
from throwaway.provision.aws import instance as instance_lib
from throwaway.provision.aws import tags as tags_lib


def _tags(app_tag='bench', user_name='alice'):
    scope = (common.CleanupResources.all_resources()
             if app_tag is None else common.CleanupResources.with_app_tag(app_tag))
    return tags_lib.Tags(user_name=user_name, cleanup=scope)


async def _provision(client, tags, suffix='', network_interface_count=1):
    """Creates shared resources and one instance in the scope of `tags`."""
    shared = await instance_lib.setup_shared_resources(
        client,
        tags,
        key_name=f'key{suffix}',
        security_group_name=f'sg{suffix}',
        placement_group_name=f'pg{suffix}',
        vpc_id=None,
        subnet_id=None,
        security_group_id=None)
    await instance_lib.create_ec2_instance(
        client,
        common.Ec2InstanceDefinition(
            't2.micro', network_interface_count=network_interface_count),
        shared=shared,
        tags=tags,
        host_identity=authentication.generate_host_identity(),
        use_public_addresses=True)
    return shared


def _operations(client):
    return [op for op, _ in client.calls]


@pytest.fixture
def mock_logger(monkeypatch):
    logger = mock.MagicMock()
    monkeypatch.setattr(cleanup, 'logger', logger)
    return logger


@pytest.mark.asyncio
async def test_cleanup_order(fake_ec2, fast_polling, mock_wait_for_ssh,
                             mock_logger):
    tags = _tags()
    await _provision(fake_ec2, tags, network_interface_count=2)
    fake_ec2.calls.clear()

    await cleanup.cleanup_resources(fake_ec2, tags)

    ops = _operations(fake_ec2)
    first_release = ops.index('release_address')
    terminate = ops.index('terminate_instances')
    assert first_release < terminate
    for deletion in ('delete_security_group', 'delete_placement_group',
                     'delete_key_pair'):
        assert terminate < ops.index(deletion)
    # The address was still associated, so it was detached first.
    assert 'disassociate_address' in ops
    assert fake_ec2.addresses == {}


@pytest.mark.asyncio
async def test_cleanup_is_idempotent(fake_ec2, fast_polling, mock_wait_for_ssh,
                                     mock_logger):
    tags = _tags()
    await _provision(fake_ec2, tags)

    await cleanup.cleanup_resources(fake_ec2, tags)
    # The security group is held by the shutting down instance.
    assert len(fake_ec2.security_groups) == 1
    assert fake_ec2.placement_groups == {}
    assert fake_ec2.key_pairs == {}

    await cleanup.cleanup_resources(fake_ec2, tags)
    assert fake_ec2.security_groups == {}

    fake_ec2.calls.clear()
    await cleanup.cleanup_resources(fake_ec2, tags)
    ops = _operations(fake_ec2)
    assert 'delete_security_group' not in ops
    assert 'delete_placement_group' not in ops
    assert 'delete_key_pair' not in ops
    assert 'release_address' not in ops


@pytest.mark.asyncio
async def test_security_group_in_use_is_logged(fake_ec2, fast_polling,
                                               mock_wait_for_ssh, mock_logger):
    tags = _tags()
    shared = await _provision(fake_ec2, tags)

    await cleanup.cleanup_resources(fake_ec2, tags)

    messages = [call.args[0] for call in mock_logger.info.call_args_list]
    assert any(shared.security_group_id in m and 'could not be deleted' in m
               for m in messages)


@pytest.mark.asyncio
async def test_cleanup_respects_app_tag(fake_ec2, fast_polling,
                                        mock_wait_for_ssh, mock_logger):
    await _provision(fake_ec2, _tags('bench'), suffix='-bench')
    await _provision(fake_ec2, _tags('other'), suffix='-other')

    await cleanup.cleanup_resources(fake_ec2, _tags('bench'))
    await cleanup.cleanup_resources(fake_ec2, _tags('bench'))

    assert list(fake_ec2.key_pairs.values()) == ['key-other']
    assert list(fake_ec2.placement_groups.values()) == ['pg-other']
    assert [g['GroupName'] for g in fake_ec2.security_groups.values()
           ] == ['sg-other']
    states = sorted(record['instance']['State']['Name']
                    for record in fake_ec2.instances.values())
    assert states == ['pending', 'terminated']


@pytest.mark.asyncio
async def test_cleanup_all_resources_of_user(fake_ec2, fast_polling,
                                             mock_wait_for_ssh, mock_logger):
    await _provision(fake_ec2, _tags('bench'), suffix='-bench')
    await _provision(fake_ec2, _tags(None), suffix='-untagged')
    await _provision(fake_ec2, _tags('bench', user_name='bob'), suffix='-bob')

    await cleanup.cleanup_resources(fake_ec2, _tags(None))

    assert list(fake_ec2.key_pairs.values()) == ['key-bob']
    assert list(fake_ec2.placement_groups.values()) == ['pg-bob']


@pytest.mark.asyncio
async def test_keypair_permission_error_skips_remaining(fake_ec2, mock_logger):
    tags = _tags()
    for name in ('key-1', 'key-2', 'key-3'):
        await instance_lib.create_key_pair(fake_ec2, tags, name)
    fake_ec2.fail_next('delete_key_pair', 'UnauthorizedOperation')

    await cleanup.cleanup_resources(fake_ec2, tags)

    assert len(fake_ec2.calls_of('delete_key_pair')) == 1
    assert len(fake_ec2.key_pairs) == 3
    mock_logger.error.assert_called_once()
    assert 'permissions' in mock_logger.error.call_args.args[0]


@pytest.mark.asyncio
async def test_keypair_error_is_raised_after_other_deletions(
        fake_ec2, mock_logger):
    tags = _tags()
    key_pair_name = 'key-1'
    await instance_lib.create_key_pair(fake_ec2, tags, key_pair_name)
    await instance_lib.create_security_group(fake_ec2, tags, 'sg', None, None)
    await instance_lib.create_placement_group(fake_ec2, tags, 'pg')
    (key_pair_id,) = fake_ec2.key_pairs
    fake_ec2.fail_next('delete_key_pair', 'InternalError')

    with pytest.raises(exceptions.KeyPairDeletionError) as exc_info:
        await cleanup.cleanup_resources(fake_ec2, tags)

    assert exc_info.value.key_pair_id == key_pair_id
    assert fake_ec2.security_groups == {}
    assert fake_ec2.placement_groups == {}


@pytest.mark.asyncio
async def test_terminate_failure_is_logged(fake_ec2, fast_polling,
                                           mock_wait_for_ssh, mock_logger):
    tags = _tags()
    await _provision(fake_ec2, tags)
    fake_ec2.fail_next('terminate_instances', 'InternalError')

    await cleanup.cleanup_resources(fake_ec2, tags)

    mock_logger.error.assert_called_once()
    assert 'terminate' in mock_logger.error.call_args.args[0]
    assert fake_ec2.key_pairs == {}


@pytest.mark.asyncio
async def test_release_failure_is_logged(fake_ec2, fast_polling,
                                         mock_wait_for_ssh, mock_logger):
    tags = _tags()
    await _provision(fake_ec2, tags, network_interface_count=2)
    fake_ec2.fail_next('release_address', 'InternalError')

    await cleanup.cleanup_resources(fake_ec2, tags)

    mock_logger.error.assert_called_once()
    assert len(fake_ec2.addresses) == 1
    assert fake_ec2.calls_of('terminate_instances')


@pytest.mark.asyncio
async def test_discovery_errors_propagate(fake_ec2, mock_logger):
    fake_ec2.fail_next('describe_tags', 'RequestLimitExceeded')
    with pytest.raises(exceptions.ResourceDiscoveryError):
        await cleanup.cleanup_resources(fake_ec2, _tags())


@pytest.mark.asyncio
async def test_placement_group_lookup_failure_is_logged(
        fake_ec2, fast_polling, mock_wait_for_ssh, mock_logger):
    tags = _tags()
    await _provision(fake_ec2, tags)
    fake_ec2.fail_next('describe_placement_groups', 'InternalError')

    await cleanup.cleanup_resources(fake_ec2, tags)

    mock_logger.error.assert_called_once()
    assert 'placement groups' in mock_logger.error.call_args.args[0]
    assert not fake_ec2.calls_of('delete_placement_group')
    assert len(fake_ec2.placement_groups) == 1
    assert fake_ec2.key_pairs == {}

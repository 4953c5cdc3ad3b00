"""This module contains schemas used to validate objects.

Schemas conform to the JSON Schema specification as defined at
https://json-schema.org/
"""


def _get_single_aws_id_schema(prefix: str):
    return {
        'type': 'string',
        'pattern': f'^{prefix}-[0-9a-f]+$',
    }


def get_aws_schema():
    return {
        'type': 'object',
        'required': [],
        'additionalProperties': False,
        'properties': {
            'use_public_addresses': {
                'type': 'boolean',
                'default': True,
            },
            'vpc_id': _get_single_aws_id_schema('vpc'),
            'subnet_id': _get_single_aws_id_schema('subnet'),
            'security_group_id': _get_single_aws_id_schema('sg'),
            # Whether to also wait for the public ip that a subnet with
            # MapPublicIpOnLaunch assigns when public addresses are off.
            'wait_for_auto_assigned_public_ip': {
                'type': 'boolean',
                'default': True,
            },
        },
    }


def get_config_schema():
    return {
        'type': 'object',
        'required': [],
        'additionalProperties': False,
        'properties': {
            'aws': get_aws_schema(),
        },
    }

"""Resolves the IAM principal that owns throwaway resources."""
from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.adaptors import aws
from throwaway.utils import common_utils
from throwaway.utils import context_utils

logger = throwaway_logging.init_logger(__name__)


def principal_from_arn(arn: str) -> str:
    """Returns the final path segment of an IAM ARN.

    Example:
        >>> principal_from_arn('arn:aws:iam::123456789012:user/ci/alice')
        'alice'
        >>> principal_from_arn(
        ...     'arn:aws:sts::123456789012:assumed-role/Dev/alice@corp.com')
        'alice@corp.com'
    """
    resource = arn.split(':', 5)[-1]
    return resource.rsplit('/', 1)[-1]


async def user_name(sts_client) -> str:
    """Returns the principal name of the current credentials.

    Raises:
        CloudUserIdentityError: if `aws sts get-caller-identity` fails.
    """
    try:
        identity = await context_utils.to_thread(
            sts_client.get_caller_identity)
    except aws.botocore_exceptions().NoCredentialsError as e:
        raise exceptions.CloudUserIdentityError(
            'AWS credentials are not set. Details: `aws sts '
            'get-caller-identity` failed with error: '
            f'{common_utils.format_exception(e, use_bracket=True)}.') from e
    except (aws.botocore_exceptions().ClientError,
            aws.botocore_exceptions().BotoCoreError) as e:
        raise exceptions.CloudUserIdentityError(
            'Failed to access AWS services with credentials. Details: `aws '
            'sts get-caller-identity` failed with error: '
            f'{common_utils.format_exception(e, use_bracket=True)}.') from e
    name = principal_from_arn(identity['Arn'])
    logger.debug(f'Resolved IAM principal {name!r} from {identity["Arn"]}.')
    return name

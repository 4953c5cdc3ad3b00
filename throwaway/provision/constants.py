"""Constants used by the AWS provisioner."""

# Every resource lives in a single region and zone so that cleanup only has
# to scan one place.
REGION = 'us-east-1'
AVAILABILITY_ZONE = 'us-east-1c'

TAG_USER_KEY = 'throwaway:user'
TAG_APP_KEY = 'throwaway:app'
TAG_NAME_KEY = 'Name'
# Value of the Name tag for resources that have no better description.
DEFAULT_RESOURCE_LABEL = 'throwaway'

RESOURCE_NAME_PREFIX = 'throwaway'

SSH_USER = 'ubuntu'
SSH_PORT = 22

ROOT_DEVICE_NAME = '/dev/sda1'
ROOT_VOLUME_TYPE = 'gp2'

UBUNTU_IMAGE_SSM_PARAMETER = (
    'resolve:ssm:/aws/service/canonical/ubuntu/server/{version}/stable/current/'
    '{arch}/hvm/ebs-gp2/ami-id')

# Retry pacing.
ASSOCIATE_ADDRESS_RETRY_INTERVAL_SECONDS = 2
ASSOCIATE_ADDRESS_TIMEOUT_SECONDS = 120
INSTANCE_POLL_INTERVAL_SECONDS = 1
SSH_READY_POLL_INTERVAL_SECONDS = 2

# Error codes.
INSTANCE_NOT_FOUND_ERROR_CODE = 'InvalidInstanceID.NotFound'
UNAUTHORIZED_ERROR_CODE = 'UnauthorizedOperation'
ADDRESS_IN_USE_ERROR_CODE = 'InvalidIPAddress.InUse'

# Errors swallowed while polling a freshly launched instance.
TRANSIENT_DESCRIBE_INSTANCE_ERRORS = frozenset({INSTANCE_NOT_FOUND_ERROR_CODE})

# Maximum size of base64 encoded EC2 user data.
MAX_USER_DATA_BYTES = 16 * 1024

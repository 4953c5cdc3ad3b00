import pytest

# We need to import all the fixtures here, so that the tests under
# unit_tests/ and smoke_tests/ can access them.
from common_test_fixtures import fake_aws
from common_test_fixtures import fake_ec2
from common_test_fixtures import fake_sts
from common_test_fixtures import fast_polling
from common_test_fixtures import isolated_config
from common_test_fixtures import mock_wait_for_ssh

# Usage: use
#   @pytest.mark.aws
# to mark a test as creating real AWS resources. Such tests are skipped unless
# --aws is given, since they need credentials and cost money.
# https://docs.pytest.org/en/latest/example/simple.html#control-skipping-of-tests-according-to-command-line-option


def pytest_addoption(parser):
    parser.addoption('--aws',
                     action='store_true',
                     default=False,
                     help='Run tests that create real AWS resources.')


def pytest_configure(config):
    config.addinivalue_line(
        'markers', 'aws: mark test as creating real AWS resources')


def pytest_collection_modifyitems(config, items):
    if config.getoption('--aws'):
        return
    skip_marks = pytest.mark.skip(reason='need --aws option to run')
    for item in items:
        if item.get_closest_marker('aws') is not None:
            item.add_marker(skip_marks)


@pytest.fixture(autouse=True)
def _isolate_user_config(request):
    """Unit tests never read the developer's ~/.throwaway/config.yaml."""
    if request.node.get_closest_marker('aws') is None:
        request.getfixturevalue('isolated_config')

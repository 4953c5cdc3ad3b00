"""Throwaway: disposable EC2 machines for tests and benchmarks."""
from throwaway.core import Aws
from throwaway.core import AwsBuilder
from throwaway.provision.common import CleanupResources
from throwaway.provision.common import Ec2Instance
from throwaway.provision.common import Ec2InstanceDefinition
from throwaway.provision.common import InstanceOs
from throwaway.provision.common import NetworkInterface

__version__ = '0.3.0'

__all__ = [
    '__version__',
    'Aws',
    'AwsBuilder',
    'CleanupResources',
    'Ec2Instance',
    'Ec2InstanceDefinition',
    'InstanceOs',
    'NetworkInterface',
]

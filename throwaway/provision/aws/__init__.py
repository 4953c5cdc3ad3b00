"""AWS provisioner for throwaway."""

from throwaway.provision.aws.cleanup import cleanup_resources
from throwaway.provision.aws.instance import create_ec2_instance
from throwaway.provision.aws.instance import setup_shared_resources

__all__ = ('cleanup_resources', 'create_ec2_instance',
           'setup_shared_resources')

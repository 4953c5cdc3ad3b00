"""Throwaway CLI.

    throwaway create --instance-type t2.micro
    throwaway cleanup
"""
import asyncio
from typing import Optional

import click
import colorama

import throwaway
from throwaway import core
from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.provision import common
from throwaway.utils import env_options

# Scope used by the CLI when no --app-tag is given, so that `throwaway
# cleanup` never touches resources created through the library.
DEFAULT_APP_TAG = 'create-instance'


class _NaturalOrderGroup(click.Group):
    """Lists commands in the order defined in the script. """

    def list_commands(self, ctx):
        return self.commands.keys()


def _cleanup_scope(app_tag: Optional[str],
                   all_resources: bool) -> common.CleanupResources:
    if all_resources:
        return common.CleanupResources.all_resources()
    return common.CleanupResources.with_app_tag(app_tag or DEFAULT_APP_TAG)


_app_tag_option = click.option(
    '--app-tag',
    default=None,
    type=str,
    help=('Only consider resources created with this tag. '
          f'Defaults to {DEFAULT_APP_TAG!r}.'))


@click.group(cls=_NaturalOrderGroup)
@click.version_option(throwaway.__version__, prog_name='throwaway')
@click.option(
    '--debug',
    default=env_options.Options.SHOW_DEBUG_INFO.get(),
    is_flag=True,
    help='Show debug info.',
)
def cli(debug: bool):
    """Throwaway: disposable EC2 instances for tests and benchmarks."""
    if debug:
        throwaway_logging.set_handler_level(throwaway_logging.DEBUG)


async def _create(definition: common.Ec2InstanceDefinition,
                  cleanup: common.CleanupResources) -> None:
    aws = await core.Aws.builder(cleanup).build()
    instance = await aws.create_ec2_instance(definition)
    result = await instance.ssh_shell('lsb_release -a')
    click.echo(f'Created instance running:\n{result.stdout}')
    click.echo('Run the following to ssh into it:\n'
               f'{instance.ssh_instructions()}')


@cli.command()
@click.option('--instance-type',
              required=True,
              type=str,
              help='EC2 instance type, e.g. t2.micro.')
@click.option('--volume-size',
              default=20,
              show_default=True,
              type=click.IntRange(min=1),
              help='Root volume size in GB.')
@click.option('--network-interfaces',
              default=1,
              show_default=True,
              type=click.IntRange(min=1),
              help='Number of network interfaces.')
@click.option('--os',
              'os_version',
              default=common.InstanceOs.UBUNTU_22_04.value,
              show_default=True,
              type=click.Choice([os.value for os in common.InstanceOs]),
              help='Ubuntu release to run.')
@click.option('--ami',
              default=None,
              type=str,
              help='Image id to use instead of the Ubuntu release.')
@_app_tag_option
def create(instance_type: str, volume_size: int, network_interfaces: int,
           os_version: str, ami: Optional[str], app_tag: Optional[str]):
    """Create an instance and print how to ssh into it.

    The instance lives until `throwaway cleanup` runs with the same tag.
    """
    click.echo(f'Creating instance of type {instance_type}')
    definition = common.Ec2InstanceDefinition(
        instance_type=instance_type,
        volume_size_gb=volume_size,
        network_interface_count=network_interfaces,
        os=common.InstanceOs(os_version),
        ami=ami)
    try:
        asyncio.run(_create(definition, _cleanup_scope(app_tag, False)))
    except exceptions.ThrowawayError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@_app_tag_option
@click.option('--all',
              'all_resources',
              is_flag=True,
              default=False,
              help='Delete every resource of the current IAM principal, '
              'regardless of tag.')
def cleanup(app_tag: Optional[str], all_resources: bool):
    """Delete the instances and supporting resources of a tag."""
    if all_resources and app_tag is not None:
        raise click.UsageError('--all and --app-tag are mutually exclusive.')
    try:
        asyncio.run(
            core.Aws.cleanup_resources_static(
                _cleanup_scope(app_tag, all_resources)))
    except exceptions.ThrowawayError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f'{colorama.Fore.GREEN}All throwaway resources have been '
               f'deleted{colorama.Style.RESET_ALL}')


def main():
    return cli()


if __name__ == '__main__':
    main()

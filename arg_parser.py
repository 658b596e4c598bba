# In arg_parser.py

import argparse

import argcomplete

from commands import (
    apply_command, destroy_command, import_command, plan_command, read_command,
    refresh_command, show_command, types_command, validate_command
)
from constants import DEFAULT_CONFIG_FILE
from provider import DATA_SOURCES, RESOURCES


def create_parser():
    """
    Creates and configures the argparse object for the vsprov tool.
    """
    parser = argparse.ArgumentParser(prog='vsprov', description="Declarative vSphere provisioning tool")

    parser.add_argument('--verbose', action='store_true', help='Enable debug logging.')
    parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_FILE,
                        help=f'Configuration file (default: {DEFAULT_CONFIG_FILE}).')
    parser.add_argument('--state', help='State file for the file backend (default: $VSPROV_STATE_FILE).')

    # --- Subparsers for Commands ---
    subparsers = parser.add_subparsers(dest='command', title='commands',
                                       help='Action command (validate, plan, apply, destroy, refresh, show, import, read, types)')

    confirm_parser = argparse.ArgumentParser(add_help=False)
    confirm_parser.add_argument('-y', '--yes', action='store_true',
                                help='Automatically answer yes to the confirmation prompt (non-interactive mode).')

    validate_parser = subparsers.add_parser('validate', help='Validate the configuration without connecting to vCenter.')
    validate_parser.set_defaults(func=validate_command)

    plan_parser = subparsers.add_parser('plan', help='Show the changes apply would make.')
    plan_parser.add_argument('--no-refresh', action='store_true', help='Diff against recorded state without reading resources.')
    plan_parser.set_defaults(func=plan_command)

    apply_parser = subparsers.add_parser('apply', help='Create, update or delete resources to match the configuration.',
                                         parents=[confirm_parser])
    apply_parser.set_defaults(func=apply_command)

    destroy_parser = subparsers.add_parser('destroy', help='Delete every resource recorded in state.',
                                           parents=[confirm_parser])
    destroy_parser.set_defaults(func=destroy_command)

    refresh_parser = subparsers.add_parser('refresh', help='Re-read every recorded resource into state.')
    refresh_parser.set_defaults(func=refresh_command)

    show_parser = subparsers.add_parser('show', help='Print state, or the attributes of one resource.')
    show_parser.add_argument('address', nargs='?', help='Resource address, e.g. vsphere_zone.z1.')
    show_parser.set_defaults(func=show_command)

    import_parser = subparsers.add_parser('import', help='Adopt an existing remote object into state.')
    import_parser.add_argument('type', choices=sorted(RESOURCES), help='Resource type.')
    import_parser.add_argument('name', help='Resource name used in the address.')
    import_parser.add_argument('id', help='Remote id (the inventory path for compute clusters).')
    import_parser.set_defaults(func=import_command)

    read_parser = subparsers.add_parser('read', help='Run a data source and print the result.')
    read_parser.add_argument('type', choices=sorted(DATA_SOURCES), help='Data source type.')
    read_parser.add_argument('--attr', action='append', metavar='KEY=VALUE',
                             help='Data source argument. Repeatable. JSON values are decoded.')
    read_parser.add_argument('--json', action='store_true', help='Print the result as JSON.')
    read_parser.set_defaults(func=read_command)

    types_parser = subparsers.add_parser('types', help='List supported resource and data source types.')
    types_parser.set_defaults(func=types_command)

    argcomplete.autocomplete(parser)
    return parser

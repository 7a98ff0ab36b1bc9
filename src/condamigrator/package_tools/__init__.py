"""
Package tool clients for condamigrator.

This module wraps the command-line package-environment tools the migration drives.
"""

from .base import CommandResult, CommandRunner, PackageToolClient
from .conda import CondaClient, parse_channels, parse_environment_list

__all__ = [
    'CommandResult',
    'CommandRunner',
    'PackageToolClient',
    'CondaClient',
    'parse_channels',
    'parse_environment_list',
]

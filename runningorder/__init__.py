"""
This is the main package for RunningOrder's cloud synchronisation layer.

- ``cloud`` - the record zones and change subscriptions RunningOrder keeps in CloudKit.
- ``cli`` - the RunningOrder command-line interface.
- ``helpers`` - helpers used by the cloud layer and the CLI.

"""

from . import helpers

__all__ = ['helpers', ]

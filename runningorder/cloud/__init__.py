"""
This is the cloud synchronisation part of RunningOrder. Here, you'll find the following:

- ``controller.py`` - Contains the ``SyncZoneManager`` class, which sets up the owned zone, the collaborator zones and
  the change subscriptions.
- ``model`` - Contains the zone identities, the CloudKit client, the local stores and the background tasks.

"""

from . import model
from . import controller

__all__ = ['model', 'controller', ]

"""
This is the model of the cloud synchronisation part of RunningOrder. Here, you'll find the following:

- ``zone.py`` - Contains the ``ZoneIdentity`` class, the ``DatabaseScope`` and the ``RecordType`` taxonomy.
- ``backend.py`` - Contains the ``CloudContainer`` and ``CloudDatabase`` classes which call the CloudKit web services.
- ``remote.py`` - Contains the ``RemoteZone`` and ``DatabaseSubscription`` classes.
- ``storage.py`` - Contains the ``CollaboratorStore`` and ``PreferenceStore`` classes which persist local state.
- ``notification.py`` - Parses the remote notifications pushed for database subscriptions.
- ``tasks.py`` - Contains the ``EventSignal`` and ``BackgroundTask`` classes.

"""

from . import zone, backend, remote, storage, notification, tasks

__all__ = ['zone', 'backend', 'remote', 'storage', 'notification', 'tasks', ]

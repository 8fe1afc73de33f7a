"""
Parses the remote notifications pushed by CloudKit for database subscriptions.

A database change notification looks like this::

    {
        "aps": {"content-available": 1},
        "ck": {
            "ce": 2,
            "nid": "...",
            "cid": "iCloud.com.worldline.RunningOrder",
            "met": {"dbs": 1, "sid": "privateDBSubscription"}
        }
    }

The ``met`` key is only present for database notifications; ``dbs`` holds the scope of the changed database.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from runningorder.cloud.model.zone import DatabaseScope

#: Scope codes used in the ``dbs`` key of a notification
SCOPE_CODES = {
    0: DatabaseScope.PUBLIC,
    1: DatabaseScope.PRIVATE,
    2: DatabaseScope.SHARED
}


def database_scope_for_notification(payload: Mapping[str, Any]) -> DatabaseScope | None:
    """
    Find the scope of the database a remote notification is about.

    :param payload: the notification payload, as delivered to the application.

    :return: the database scope, or None if the payload is not a database change notification.
    """
    logging.debug('Received notification: {}'.format(payload))
    if not isinstance(payload, Mapping):
        return None
    ck = payload.get('ck')
    if not isinstance(ck, Mapping):
        return None
    met = ck.get('met')
    if not isinstance(met, Mapping):
        return None

    code = met.get('dbs')
    if isinstance(code, bool):
        return None
    if isinstance(code, int):
        return SCOPE_CODES.get(code)
    if isinstance(code, str):
        try:
            return DatabaseScope(code.lower())
        except ValueError:
            return None
    return None

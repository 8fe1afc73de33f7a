"""
Contains the ``RemoteZone`` class, which represents a record zone in a cloud database, and the
``DatabaseSubscription`` class, which represents the change subscription RunningOrder registers on a cloud database.
"""

from __future__ import annotations

from runningorder.cloud.model.backend import CloudDatabase, CloudKitError
from runningorder.cloud.model.zone import ZoneIdentity


class RemoteZone:
    """
    Represents a record zone in a cloud database.
    """

    def __init__(self, identity: ZoneIdentity, database: CloudDatabase):
        """
        Create a new remote zone instance. The zone is not actually created until the ``create()`` method is called.

        :param identity: the identity of the zone.
        :param database: the database holding the zone.
        """
        self.identity: ZoneIdentity = identity
        self.database: CloudDatabase = database

    def create(self) -> tuple[bool, str]:
        """
        Creates this zone in CloudKit. Creating a zone which already exists succeeds.

        :returns:

            -success (:py:class:`bool`) - true if the zone is successfully created.

            -data (:py:class:`str`) - error message on failure or success message.

        """
        try:
            self.database.save_zone(self.identity)
        except CloudKitError as e:
            return False, "Failed to create zone {0}: {1}".format(self.identity, e)
        return True, "Created zone {}".format(self.identity)

    def __str__(self):
        return str(self.identity)

    def __repr__(self):
        return "<RemoteZone {} in {}>".format(self.identity, self.database)


class DatabaseSubscription:
    """
    Represents the subscription which makes CloudKit push a silent notification for every change in a database.
    Its identifier is derived from the scope of the database, so there is at most one per database.
    """

    def __init__(self, database: CloudDatabase):
        self.database: CloudDatabase = database
        self.id: str = database.subscription_id

    def exists(self) -> tuple[bool, str] | tuple[bool, bool]:
        """
        Checks whether the database already holds any subscription.

        :returns:

            -success (:py:class:`bool`) - true if the subscriptions are successfully fetched.

            -data (:py:class:`str` | :py:class:`bool`) - error message on failure, or True if a subscription exists.

        """
        try:
            subscriptions = self.database.fetch_all_subscriptions()
        except CloudKitError as e:
            return False, "Failed to fetch subscriptions of the {0} database: {1}".format(self.database, e)
        return True, len(subscriptions) > 0

    def create(self) -> tuple[bool, str]:
        """
        Saves this subscription in CloudKit, requesting silent delivery.

        :returns:

            -success (:py:class:`bool`) - true if the subscription is successfully saved.

            -data (:py:class:`str`) - error message on failure or success message.

        """
        try:
            self.database.save_subscription(self.id, {'shouldSendContentAvailable': True})
        except CloudKitError as e:
            return False, "Failed to create subscription {0}: {1}".format(self.id, e)
        return True, "Created subscription {}".format(self.id)

    def ensure(self) -> tuple[bool, str]:
        """
        Creates this subscription unless the database already holds one. The subscriptions are always fetched before
        creation is attempted.

        :returns:

            -success (:py:class:`bool`) - true if a subscription exists or is successfully created.

            -data (:py:class:`str`) - error message on failure or success message.

        """
        success, data = self.exists()
        if not success:
            return False, data
        if data:
            return True, "Subscription already registered on the {} database".format(self.database)
        return self.create()

    def delete(self) -> tuple[bool, str]:
        """
        Deletes this subscription from CloudKit.

        :returns:

            -success (:py:class:`bool`) - true if the subscription is successfully deleted.

            -data (:py:class:`str`) - error message on failure, or the identifier of the deleted subscription.

        """
        try:
            deleted_id = self.database.delete_subscription(self.id)
        except CloudKitError as e:
            return False, "Failed to delete subscription {0}: {1}".format(self.id, e)
        return True, deleted_id

    def __str__(self):
        return self.id

    def __repr__(self):
        return "<DatabaseSubscription {}>".format(self.id)

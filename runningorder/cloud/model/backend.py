"""
Contains the ``CloudContainer`` and ``CloudDatabase`` classes, which talk to the CloudKit web services API. RunningOrder
never reimplements anything the backend does: zones, subscriptions and permissions are only requested from it here.

Every call goes to ``{base_url}/database/1/{container}/{environment}/{scope}/{endpoint}``. Lookups (``users/caller``,
``subscriptions/list``) are ``GET`` requests, modifications are JSON ``POST`` requests. Any failure, whether raised by
the transport, returned as an HTTP error, reported for a single operation or found in a response of the wrong shape, is
raised as a ``CloudKitError``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List

import requests

from runningorder.cloud.model.zone import DatabaseScope, ZoneIdentity

#: Host of the CloudKit web services API
DEFAULT_BASE_URL: str = "https://api.apple-cloudkit.com"
#: Seconds to wait for a response before giving up
DEFAULT_TIMEOUT: int = 30


class CloudKitError(Exception):
    """
    Raised when a request to CloudKit fails.
    """

    def __init__(self, reason: str, server_error_code: str | None = None, status_code: int | None = None):
        super().__init__(reason)
        self.reason: str = reason
        self.server_error_code: str | None = server_error_code
        self.status_code: int | None = status_code

    def __str__(self):
        if self.server_error_code:
            return "{} ({})".format(self.reason, self.server_error_code)
        return self.reason


class ApplicationPermission(Enum):
    USER_DISCOVERABILITY = "userDiscoverability"


class ApplicationPermissionStatus(Enum):
    """
    Status of an application permission, as reported by CloudKit.
    """

    INITIAL_STATE = "INITIAL_STATE"
    COULD_NOT_COMPLETE = "COULD_NOT_COMPLETE"
    DENIED = "DENIED"
    GRANTED = "GRANTED"


class CloudContainer:
    """
    Represents a CloudKit container, and holds one ``CloudDatabase`` per scope.
    """

    def __init__(self, identifier: str, environment: str = "development", api_token: str | None = None,
                 web_auth_token: str | None = None, base_url: str = DEFAULT_BASE_URL,
                 session: requests.Session | None = None, timeout: int = DEFAULT_TIMEOUT):
        """
        Create a new container instance. No request is made until one of the databases is used.

        :param identifier: the container identifier, e.g. ``iCloud.com.worldline.RunningOrder``.
        :param environment: either ``development`` or ``production``.
        :param api_token: the API token of the container.
        :param web_auth_token: the web auth token of the signed-in user, required for the private and shared databases.
        :param base_url: host of the web services API.
        :param session: the HTTP session to use. A new session is created if not given.
        :param timeout: seconds to wait for each response.
        """
        self.identifier: str = identifier
        self.environment: str = environment
        self.api_token: str | None = api_token
        self.web_auth_token: str | None = web_auth_token
        self.base_url: str = base_url.rstrip('/')
        self.session: requests.Session = session if session is not None else requests.Session()
        self.timeout: int = timeout
        self._databases = {scope: CloudDatabase(self, scope) for scope in DatabaseScope}

    @property
    def private_database(self) -> CloudDatabase:
        return self._databases[DatabaseScope.PRIVATE]

    @property
    def shared_database(self) -> CloudDatabase:
        return self._databases[DatabaseScope.SHARED]

    @property
    def public_database(self) -> CloudDatabase:
        return self._databases[DatabaseScope.PUBLIC]

    def database(self, scope: DatabaseScope) -> CloudDatabase:
        return self._databases[scope]

    def api_call(self, scope: DatabaseScope, endpoint: str, body: dict | None = None, method: str = 'POST') -> dict:
        """
        Makes an authenticated call to the web services API.

        :param scope: the database scope the endpoint belongs to.
        :param endpoint: the endpoint, relative to the database, e.g. ``subscriptions/list``.
        :param body: the JSON body of a ``POST`` request. A ``GET`` request has no body.
        :param method: the HTTP method, ``GET`` or ``POST``.

        :raises CloudKitError: if the request fails or the response is not JSON.

        :return: the decoded JSON response.
        """
        url = "{base}/database/1/{container}/{environment}/{scope}/{endpoint}".format(
            base=self.base_url,
            container=self.identifier,
            environment=self.environment,
            scope=scope.value,
            endpoint=endpoint
        )
        params = {}
        if self.api_token:
            params['ckAPIToken'] = self.api_token
        if self.web_auth_token:
            params['ckWebAuthToken'] = self.web_auth_token

        logging.debug('CloudKit request: {} {}'.format(method, url))
        try:
            if method == 'GET':
                response = self.session.get(url, params=params, timeout=self.timeout)
            else:
                response = self.session.post(url, params=params, json=body or {}, timeout=self.timeout)
        except requests.RequestException as e:
            raise CloudKitError("Request to {} failed: {}".format(endpoint, e)) from e

        try:
            content = response.json()
        except ValueError:
            content = None

        if response.status_code >= 400:
            if isinstance(content, dict):
                raise CloudKitError(content.get('reason', response.reason or 'Request failed'),
                                    content.get('serverErrorCode'), response.status_code)
            raise CloudKitError("{} {}".format(response.status_code, response.text), status_code=response.status_code)
        if not isinstance(content, dict):
            raise CloudKitError("Unexpected response from {}: {}".format(endpoint, response.text),
                                status_code=response.status_code)
        return content

    def status_for_application_permission(self, permission: ApplicationPermission) -> ApplicationPermissionStatus:
        """
        Fetch the status of an application permission for the signed-in user.

        :param permission: the permission to check.

        :raises CloudKitError: if the request fails or the status is unknown.

        :return: the permission status.
        """
        content = self.api_call(DatabaseScope.PUBLIC, 'users/caller', method='GET')
        permissions = content.get('applicationPermissions')
        if permissions is None:
            return ApplicationPermissionStatus.INITIAL_STATE
        if not isinstance(permissions, dict):
            raise CloudKitError("Unexpected applicationPermissions returned by users/caller: {}".format(permissions))
        return _parse_permission_status(permissions.get(permission.value, 'INITIAL_STATE'))

    def request_application_permission(self, permission: ApplicationPermission) -> ApplicationPermissionStatus:
        """
        Ask the signed-in user to grant an application permission.

        The web services API has no endpoint for this: the user grants discoverability in the iCloud sign-in flow of
        the web page that obtained the web auth token. The request is therefore reported as not completed.

        :param permission: the permission to request.

        :raises CloudKitError: always, as the request cannot be made from here.

        :return: never returns.
        """
        raise CloudKitError("Requesting {} is not supported by CloudKit web services; grant it when signing in to "
                            "iCloud".format(permission.value), 'NOT_SUPPORTED')

    def __str__(self):
        return "{} ({})".format(self.identifier, self.environment)

    def __repr__(self):
        return "<CloudContainer {} ({})>".format(self.identifier, self.environment)


class CloudDatabase:
    """
    Represents one of the private, shared or public databases of a container.
    """

    def __init__(self, container: CloudContainer, scope: DatabaseScope):
        self.container: CloudContainer = container
        self.scope: DatabaseScope = scope

    @property
    def subscription_id(self) -> str:
        return self.scope.subscription_id

    def save_zone(self, zone: ZoneIdentity) -> dict:
        """
        Create a record zone.

        A zone in the private database always belongs to the signed-in user, so its owner is left for CloudKit to fill
        in. Zones in the other databases carry their owner name.

        :param zone: the identity of the zone to create.

        :raises CloudKitError: if the zone could not be created.

        :return: the zone as returned by CloudKit.
        """
        zone_id = {'zoneName': zone.zone_name}
        if self.scope != DatabaseScope.PRIVATE:
            zone_id['ownerName'] = zone.owner_name
        body = {'operations': [{'operationType': 'create', 'zone': {'zoneID': zone_id}}]}
        content = self.container.api_call(self.scope, 'zones/modify', body)
        return _first_result(_list_field(content, 'zones', 'zones/modify'), 'zones/modify')

    def fetch_all_subscriptions(self) -> List[dict]:
        """
        Fetch every subscription registered on this database.

        :raises CloudKitError: if the subscriptions could not be fetched.

        :return: the list of subscriptions.
        """
        content = self.container.api_call(self.scope, 'subscriptions/list', method='GET')
        subscriptions = _list_field(content, 'subscriptions', 'subscriptions/list')
        for subscription in subscriptions:
            if not isinstance(subscription, dict):
                raise CloudKitError("Unexpected subscription returned by subscriptions/list: {}".format(subscription))
        return subscriptions

    def save_subscription(self, subscription_id: str, notification_info: dict | None = None) -> dict:
        """
        Save a database subscription, which makes CloudKit push a notification for every change in this database.

        :param subscription_id: the identifier of the subscription.
        :param notification_info: how the notification is delivered. Defaults to silent delivery.

        :raises CloudKitError: if the subscription could not be saved.

        :return: the subscription as returned by CloudKit.
        """
        subscription = {
            'subscriptionID': subscription_id,
            'subscriptionType': 'database',
            'notificationInfo': notification_info if notification_info is not None else {
                'shouldSendContentAvailable': True
            }
        }
        body = {'operations': [{'operationType': 'create', 'subscription': subscription}]}
        content = self.container.api_call(self.scope, 'subscriptions/modify', body)
        return _first_result(_list_field(content, 'subscriptions', 'subscriptions/modify'), 'subscriptions/modify')

    def delete_subscription(self, subscription_id: str) -> str:
        """
        Delete a subscription.

        :param subscription_id: the identifier of the subscription to delete.

        :raises CloudKitError: if the subscription could not be deleted.

        :return: the identifier of the deleted subscription.
        """
        body = {'operations': [{'operationType': 'delete', 'subscription': {'subscriptionID': subscription_id}}]}
        content = self.container.api_call(self.scope, 'subscriptions/modify', body)
        result = _first_result(_list_field(content, 'subscriptions', 'subscriptions/modify'), 'subscriptions/modify')
        return result.get('subscriptionID', subscription_id)

    def __str__(self):
        return self.scope.value

    def __repr__(self):
        return "<CloudDatabase {}>".format(self.scope.value)


def _list_field(content: dict, key: str, endpoint: str) -> list:
    # A missing field is an empty list, anything but a list is malformed
    value = content.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise CloudKitError("Unexpected {} returned by {}: {}".format(key, endpoint, value))
    return value


def _first_result(results: list, endpoint: str) -> dict:
    if len(results) == 0:
        raise CloudKitError("No result returned by {}".format(endpoint))
    result = results[0]
    if not isinstance(result, dict):
        raise CloudKitError("Unexpected result returned by {}: {}".format(endpoint, result))
    if 'serverErrorCode' in result:
        raise CloudKitError(result.get('reason', 'Operation failed'), result['serverErrorCode'])
    return result


def _parse_permission_status(value: str | None) -> ApplicationPermissionStatus:
    if not isinstance(value, str):
        raise CloudKitError("Unknown permission status {}".format(value))
    try:
        return ApplicationPermissionStatus(value)
    except ValueError:
        raise CloudKitError("Unknown permission status {}".format(value))

import pytest

from runningorder.cloud.model.backend import ApplicationPermissionStatus, CloudKitError
from runningorder.cloud.model.storage import CollaboratorStore, PreferenceStore
from runningorder.cloud.model.zone import DatabaseScope


class MockDatabase:
    """
    In-memory stand-in for a ``CloudDatabase``. Set ``fail_zone``, ``fail_fetch`` or ``fail_save`` to make the matching
    call raise.
    """

    def __init__(self, scope: DatabaseScope):
        self.scope = scope
        self.zones = []
        self.subscriptions = []
        self.calls = []
        self.fail_zone = False
        self.fail_fetch = False
        self.fail_save = False

    @property
    def subscription_id(self):
        return self.scope.subscription_id

    def save_zone(self, zone):
        self.calls.append(('save_zone', zone))
        if self.fail_zone:
            raise CloudKitError('Zone quota exceeded', 'QUOTA_EXCEEDED')
        self.zones.append(zone)
        return {'zoneID': zone.to_json()}

    def fetch_all_subscriptions(self):
        self.calls.append(('fetch_all_subscriptions',))
        if self.fail_fetch:
            raise CloudKitError('Network unavailable', 'NETWORK_UNAVAILABLE')
        return list(self.subscriptions)

    def save_subscription(self, subscription_id, notification_info=None):
        self.calls.append(('save_subscription', subscription_id, notification_info))
        if self.fail_save:
            raise CloudKitError('Service unavailable', 'SERVICE_UNAVAILABLE')
        subscription = {'subscriptionID': subscription_id, 'notificationInfo': notification_info}
        self.subscriptions.append(subscription)
        return subscription

    def delete_subscription(self, subscription_id):
        self.calls.append(('delete_subscription', subscription_id))
        matching = [s for s in self.subscriptions if s['subscriptionID'] == subscription_id]
        if len(matching) == 0:
            raise CloudKitError('Subscription not found', 'NOT_FOUND')
        self.subscriptions.remove(matching[0])
        return subscription_id

    def __str__(self):
        return self.scope.value


class MockContainer:
    """
    In-memory stand-in for a ``CloudContainer``.
    """

    def __init__(self, permission_status=ApplicationPermissionStatus.INITIAL_STATE,
                 request_status=ApplicationPermissionStatus.GRANTED, permission_error: bool = False):
        self.databases = {scope: MockDatabase(scope) for scope in DatabaseScope}
        self.permission_status = permission_status
        self.request_status = request_status
        self.permission_error = permission_error
        self.permission_requests = 0

    @property
    def private_database(self):
        return self.databases[DatabaseScope.PRIVATE]

    @property
    def shared_database(self):
        return self.databases[DatabaseScope.SHARED]

    def database(self, scope):
        return self.databases[scope]

    def status_for_application_permission(self, permission):
        if self.permission_error:
            raise CloudKitError('Not authenticated', 'AUTHENTICATION_FAILED')
        return self.permission_status

    def request_application_permission(self, permission):
        self.permission_requests += 1
        return self.request_status

    def __str__(self):
        return "mock"


@pytest.fixture
def container():
    return MockContainer()


@pytest.fixture
def collaborator_store(tmp_path):
    return CollaboratorStore(tmp_path)


@pytest.fixture
def preference_store(tmp_path):
    return PreferenceStore(tmp_path)

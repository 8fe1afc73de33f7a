"""
This is the cloud synchronisation controller. ``SyncZoneManager`` owns the RunningOrder record zones and the change
subscriptions registered on them. It is constructed once when the application starts, and passed to whatever needs it.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, List, Mapping

import schedule

from runningorder import helpers
from runningorder.cloud.model.backend import (ApplicationPermission, ApplicationPermissionStatus, CloudContainer,
                                              CloudDatabase, CloudKitError)
from runningorder.cloud.model.notification import database_scope_for_notification
from runningorder.cloud.model.remote import DatabaseSubscription, RemoteZone
from runningorder.cloud.model.storage import CollaboratorStore, PreferenceStore, ZoneSetupState
from runningorder.cloud.model.tasks import BackgroundTask, EventKind, EventSignal, SyncEvent
from runningorder.cloud.model.zone import CURRENT_USER_DEFAULT_NAME, ZONE_NAME, DatabaseScope, ZoneIdentity


class SyncZoneManager:
    """
    Coordinates the locally stored zone state and collaborator identities with the zones and subscriptions of the
    cloud databases.

    On construction, the manager:

    1. Creates the owned zone, unless a previous run already did.
    2. Makes sure the private database has a change subscription for the owned zone.
    3. Makes sure the shared database has a change subscription for the zone of every known collaborator.
    4. Asks for the discoverability permission in the background, if the user was never asked.

    Failed zone or subscription setup is logged, published on :py:attr:`events` and retried every
    ``retry_interval`` minutes while the retry loop runs (see :py:meth:`start_retry_loop`).
    """

    #: Minutes between two attempts of a failed setup operation
    RETRY_INTERVAL: int = 5

    def __init__(self, container: CloudContainer, current_user: str = CURRENT_USER_DEFAULT_NAME,
                 collaborator_store: CollaboratorStore | None = None,
                 preference_store: PreferenceStore | None = None,
                 retry_interval: int = RETRY_INTERVAL,
                 request_permission: bool = True,
                 setup: bool = True,
                 on_event: Callable[[SyncEvent], Any] | None = None):
        """
        Create the manager and set up the zones and subscriptions.

        :param container: the cloud container holding the RunningOrder databases.
        :param current_user: the owner name which refers to the signed-in user.
        :param collaborator_store: where collaborator identities are stored. Defaults to ``owners.json`` in the
        Application Support folder.
        :param preference_store: where the owned zone setup state is stored. Defaults to ``preferences.json`` in the
        Application Support folder.
        :param retry_interval: minutes between two attempts of a failed setup operation.
        :param request_permission: if False, the discoverability permission is not requested.
        :param setup: if False, the zone and subscriptions are not set up, e.g. when the manager is only created to
        remove the subscriptions.
        :param on_event: connected to :py:attr:`events` before any operation runs.
        """
        self.container: CloudContainer = container
        self.current_user: str = current_user
        self.collaborator_store: CollaboratorStore = collaborator_store or CollaboratorStore()
        self.preference_store: PreferenceStore = preference_store or PreferenceStore()
        self.retry_interval: int = retry_interval
        self.owned_zone: ZoneIdentity = ZoneIdentity(ZONE_NAME, current_user)

        #: Outcome of every zone, subscription and permission operation is published here
        self.events: EventSignal = EventSignal()
        #: Background tasks started by this manager
        self.tasks: List[BackgroundTask] = []
        #: Holds the retry jobs
        self.scheduler: schedule.Scheduler = schedule.Scheduler()

        self._lock = threading.RLock()
        self._scope_locks = {scope: threading.Lock() for scope in DatabaseScope}
        #: Incremented under the scope lock each time the subscription of a database is removed
        self._removal_generations: Dict[DatabaseScope, int] = {scope: 0 for scope in DatabaseScope}
        self._retry_jobs: Dict[str, schedule.Job] = {}
        self._stop_retry_loop: threading.Event | None = None
        self._zone_creation_running: bool = False

        self._owner_names: FrozenSet[str] | None = self._load_owner_names()
        self._zone_state: ZoneSetupState = self.preference_store.zone_setup_state()

        if on_event is not None:
            self.events.connect(on_event)
        if not setup:
            return
        self.create_owned_zone_if_needed()
        self.enable_notifications_if_needed(self.owned_zone)
        for zone in self.collaborator_zones:
            self.enable_notifications_if_needed(zone)
        if request_permission:
            self.ask_permission_for_discoverability_if_needed()

    # STATE ------------------------------------------------------------------------------------------------------------

    def _load_owner_names(self) -> FrozenSet[str] | None:
        names = self.collaborator_store.load()
        return frozenset(names) if names is not None else None

    @property
    def owner_names(self) -> FrozenSet[str]:
        """
        Identities of the known collaborators.
        """
        with self._lock:
            return self._owner_names or frozenset()

    @property
    def collaborator_zones(self) -> List[ZoneIdentity]:
        """
        Identities of the zones owned by the known collaborators.
        """
        return [ZoneIdentity.for_owner(name) for name in sorted(self.owner_names)]

    @property
    def zone_state(self) -> ZoneSetupState:
        with self._lock:
            return self._zone_state

    def _set_zone_state(self, state: ZoneSetupState) -> None:
        with self._lock:
            self._zone_state = state
            success, data = self.preference_store.set_zone_setup_state(state)
        if not success:
            logging.warning('Failed to save zone setup state: {}'.format(data))

    # ZONES ------------------------------------------------------------------------------------------------------------

    def create_owned_zone_if_needed(self) -> tuple[bool, str]:
        """
        Create the owned zone in the private database, unless it has already been created. On failure, the creation is
        retried later.

        :returns:

            -success (:py:class:`bool`) - true if the zone exists or is successfully created.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        with self._lock:
            if self._zone_state == ZoneSetupState.DONE:
                return True, "Zone {} already created".format(self.owned_zone)
            if self._zone_creation_running:
                return True, "Zone {} is being created".format(self.owned_zone)
            self._zone_creation_running = True
            self._set_zone_state(ZoneSetupState.IN_PROGRESS)

        logging.debug('Creating zone {}...'.format(self.owned_zone))
        try:
            success, data = RemoteZone(self.owned_zone, self.container.private_database).create()
        finally:
            with self._lock:
                self._zone_creation_running = False

        if success:
            self._set_zone_state(ZoneSetupState.DONE)
            logging.debug(data)
        else:
            self._set_zone_state(ZoneSetupState.NOT_STARTED)
            logging.critical(data)
            self._schedule_retry('zone', self.create_owned_zone_if_needed)
        self.events.emit(SyncEvent(EventKind.ZONE_CREATION, success, data, str(self.owned_zone)))
        return success, data

    def database(self, zone: ZoneIdentity) -> CloudDatabase:
        """
        Get the database holding a zone: the private database for zones owned by the current user, the shared database
        for any other zone.

        :param zone: the zone identity.

        :return: the database holding the zone.
        """
        scope = DatabaseScope.PRIVATE if zone.owner_name == self.current_user else DatabaseScope.SHARED
        return self.container.database(scope)

    # SUBSCRIPTIONS ----------------------------------------------------------------------------------------------------

    def enable_notifications_if_needed(self, zone: ZoneIdentity) -> tuple[bool, str]:
        """
        Make sure the database holding ``zone`` has a change subscription. The existing subscriptions are fetched
        first, and a subscription is only created if there are none. On failure, this is retried later.

        :param zone: the zone to receive notifications for.

        :returns:

            -success (:py:class:`bool`) - true if the subscription exists or is successfully created.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        return self._enable_notifications(zone)

    def _enable_notifications(self, zone: ZoneIdentity, generation: int | None = None) -> tuple[bool, str]:
        # A retry carries the removal generation it was scheduled in, and is dropped once the subscriptions of its
        # database have been removed since.
        database = self.database(zone)
        with self._scope_locks[database.scope]:
            current = self._removal_generations[database.scope]
            if generation is not None and generation != current:
                data = "Subscriptions of the {} database were removed, not retrying zone {}".format(database.scope, zone)
                logging.info(data)
                return False, data
            success, data = DatabaseSubscription(database).ensure()

        if success:
            logging.debug(data)
        else:
            logging.critical('Failed to enable notifications for zone {}: {}'.format(zone, data))
            self._schedule_retry('subscription:{}'.format(database.scope.value),
                                 lambda: self._enable_notifications(zone, current))
        self.events.emit(SyncEvent(EventKind.SUBSCRIPTION_CREATION, success, data, str(zone)))
        return success, data

    def remove_subscriptions(self) -> tuple[bool, Dict[str, str]]:
        """
        Delete the change subscriptions of the private and shared databases, e.g. when the user signs out. Each
        deletion is attempted independently. Pending subscription retries are cancelled, and a retry which is already
        running when this is called does not recreate a subscription afterwards.

        :returns:

            -success (:py:class:`bool`) - true if both subscriptions are successfully deleted.

            -data (:py:class:`dict`) - for each scope, the deleted subscription identifier or the error message.

        """
        for scope in (DatabaseScope.PRIVATE, DatabaseScope.SHARED):
            self._cancel_retry('subscription:{}'.format(scope.value))

        result = {}
        all_deleted = True
        for scope in (DatabaseScope.PRIVATE, DatabaseScope.SHARED):
            with self._scope_locks[scope]:
                self._removal_generations[scope] += 1
                success, data = DatabaseSubscription(self.container.database(scope)).delete()
            if success:
                logging.debug('Subscription deletion successful: {}'.format(data))
            else:
                logging.error(data)
                all_deleted = False
            result[scope.value] = data
            self.events.emit(SyncEvent(EventKind.SUBSCRIPTION_REMOVAL, success, data, scope.value))
        return all_deleted, result

    # NOTIFICATIONS ----------------------------------------------------------------------------------------------------

    @staticmethod
    def database_scope_for_notification(payload: Mapping[str, Any]) -> DatabaseScope | None:
        """
        Find the scope of the database a remote notification is about, so the matching local data can be refreshed.

        :param payload: the notification payload.

        :return: the database scope, or None if the payload is not a database change notification.
        """
        return database_scope_for_notification(payload)

    # COLLABORATORS ----------------------------------------------------------------------------------------------------

    def save_owner_name(self, owner_name: str) -> tuple[bool, str]:
        """
        Add a collaborator and observe their zone. The identity is saved first, then the shared database subscription
        is enabled.

        :param owner_name: the identity of the collaborator.

        :returns:

            -success (:py:class:`bool`) - true if the identity is saved and the subscription exists.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        with self._lock:
            names = set(self._owner_names or ())
            names.add(owner_name)
            saved, save_data = self.collaborator_store.save(names)
            self._owner_names = frozenset(names)
        if not saved:
            logging.critical('Failed to save collaborator {}: {}'.format(owner_name, save_data))

        success, data = self.enable_notifications_if_needed(ZoneIdentity.for_owner(owner_name))
        if not saved:
            return False, save_data
        return success, data

    # PERMISSIONS ------------------------------------------------------------------------------------------------------

    def ask_permission_for_discoverability_if_needed(self) -> BackgroundTask:
        """
        In a separate thread, check the discoverability permission and request it if the user was never asked. The
        outcome is published on :py:attr:`events`.

        :return: the started task.
        """
        task = BackgroundTask(EventKind.PERMISSION_REQUEST, self._request_discoverability, self.events,
                              ApplicationPermission.USER_DISCOVERABILITY.value)
        with self._lock:
            self.tasks.append(task)
        task.start()
        return task

    def _request_discoverability(self) -> tuple[bool, str] | tuple[bool, ApplicationPermissionStatus]:
        permission = ApplicationPermission.USER_DISCOVERABILITY
        try:
            status = self.container.status_for_application_permission(permission)
            if status != ApplicationPermissionStatus.INITIAL_STATE:
                return True, status
            status = self.container.request_application_permission(permission)
        except CloudKitError as e:
            error = 'Error at requesting permission: {}'.format(e)
            logging.error(error)
            return False, error

        if status == ApplicationPermissionStatus.COULD_NOT_COMPLETE:
            error = 'Error when requesting permission for discoverability'
            logging.error(error)
            return False, error
        if status == ApplicationPermissionStatus.GRANTED:
            logging.debug('Discoverability granted')
        elif status == ApplicationPermissionStatus.DENIED:
            logging.debug('Discoverability denied')
        return True, status

    def wait_for_tasks(self, timeout: float | None = None) -> bool:
        """
        Wait for the background tasks started so far.

        :param timeout: seconds to wait for each task.

        :return: True if every task has finished.
        """
        with self._lock:
            tasks = list(self.tasks)
        for task in tasks:
            task.join(timeout)
        return not any(task.is_alive() for task in tasks)

    # RETRIES ----------------------------------------------------------------------------------------------------------

    @property
    def pending_retries(self) -> List[str]:
        """
        Keys of the operations waiting to be retried, e.g. ``zone`` or ``subscription:shared``.
        """
        with self._lock:
            return sorted(self._retry_jobs.keys())

    def _schedule_retry(self, key: str, func) -> None:
        with self._lock:
            if key in self._retry_jobs:
                return
            self._retry_jobs[key] = self.scheduler.every(self.retry_interval).minutes.do(self._retry, key, func)
        logging.info('Retrying {} in {} minutes'.format(key, self.retry_interval))

    def _cancel_retry(self, key: str) -> None:
        with self._lock:
            job = self._retry_jobs.pop(key, None)
        if job is not None:
            self.scheduler.cancel_job(job)

    def _retry(self, key: str, func):
        with self._lock:
            self._retry_jobs.pop(key, None)
        logging.info('Retrying {}...'.format(key))
        try:
            func()
        except Exception:
            logging.exception('Unexpected error when retrying {}'.format(key))
            self._schedule_retry(key, func)
        return schedule.CancelJob

    def run_pending_retries(self) -> None:
        """
        Run the retries which are due.
        """
        self.scheduler.run_pending()

    def retry_now(self) -> None:
        """
        Run every pending retry immediately.
        """
        self.scheduler.run_all()

    def start_retry_loop(self, interval: int = 1) -> threading.Event:
        """
        Keep running due retries in a separate thread until :py:meth:`stop_retry_loop` is called.

        :param interval: seconds between two checks for due retries.

        :return: the event which stops the loop when set.
        """
        with self._lock:
            if self._stop_retry_loop is None:
                self._stop_retry_loop = helpers.run_continuously(self.scheduler, interval)
            return self._stop_retry_loop

    def stop_retry_loop(self) -> None:
        with self._lock:
            if self._stop_retry_loop is not None:
                self._stop_retry_loop.set()
                self._stop_retry_loop = None

    def close(self, timeout: float | None = None) -> None:
        """
        Stop the retry loop and wait for the background tasks.

        :param timeout: seconds to wait for each task.
        """
        self.stop_retry_loop()
        self.wait_for_tasks(timeout)

    def __repr__(self):
        return "<SyncZoneManager {container}, owners: {owners}>".format(
            container=self.container,
            owners=sorted(self.owner_names)
        )

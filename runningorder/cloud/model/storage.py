"""
Contains the local stores of the cloud synchronisation layer:

- ``CollaboratorStore`` - the set of collaborator identities, saved as a JSON array in ``owners.json``.
- ``PreferenceStore`` - small preference values, saved as a JSON object in ``preferences.json``. This holds the
  ``ZoneSetupState`` of the owned zone.

Both files live in the Application Support folder.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Set

from runningorder import helpers


class StorageError(Exception):
    """
    Raised when locally stored state cannot be encoded or decoded.
    """


class ZoneSetupState(Enum):
    """
    Progress of the creation of the owned zone.
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class CollaboratorStore:
    """
    Persists the identities of the collaborators whose zones are observed.
    """

    #: Name of the file holding the collaborator identities
    FILE_NAME: str = "owners.json"

    def __init__(self, directory: Path | None = None):
        """
        Create a new collaborator store.

        :param directory: folder holding the file. Defaults to the Application Support folder.
        """
        self.directory: Path | None = directory

    @property
    def path(self) -> Path:
        directory = self.directory if self.directory is not None else helpers.settings_folder()
        return directory / CollaboratorStore.FILE_NAME

    @staticmethod
    def encode(names: Set[str]) -> str:
        """
        Encodes a set of collaborator identities to its stored form.

        :param names: the identities to encode.

        :raises StorageError: if any identity is not a string.

        :return: a JSON array of the identities.
        """
        if not all(isinstance(name, str) for name in names):
            raise StorageError("Collaborator identities must be strings")
        return json.dumps(sorted(names))

    @staticmethod
    def decode(data: str | bytes) -> Set[str]:
        """
        Decodes the stored form of a set of collaborator identities.

        :param data: a JSON array of strings.

        :raises StorageError: if the data is not a JSON array of strings.

        :return: the set of identities.
        """
        try:
            names = json.loads(data)
        except (json.decoder.JSONDecodeError, UnicodeDecodeError) as e:
            raise StorageError("Invalid collaborator data: {}".format(e)) from e
        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            raise StorageError("Collaborator data must be a JSON array of strings")
        return set(names)

    def load(self) -> Set[str] | None:
        """
        Loads the stored collaborator identities.

        :return: the set of identities, or None if nothing is stored or the stored data is unreadable.
        """
        path = self.path
        try:
            with open(path) as fp:
                return CollaboratorStore.decode(fp.read())
        except FileNotFoundError:
            return None
        except (OSError, StorageError) as e:
            logging.warning('Ignoring collaborator file {}: {}'.format(path, e))
            return None

    def save(self, names: Set[str]) -> tuple[bool, str]:
        """
        Saves the collaborator identities, replacing any stored identities.

        :param names: the identities to save.

        :returns:

            -success (:py:class:`bool`) - true if the identities are saved.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        try:
            content = CollaboratorStore.encode(names)
        except StorageError as e:
            return False, str(e)
        return helpers.write_json(self.path, json.loads(content))


class PreferenceStore:
    """
    Persists small preference values as a JSON object.
    """

    #: Name of the file holding the preferences
    FILE_NAME: str = "preferences.json"
    #: Key of the owned zone setup state
    ZONE_SETUP_KEY: str = "CloudKitCreatedSharedZone"

    def __init__(self, directory: Path | None = None):
        """
        Create a new preference store.

        :param directory: folder holding the file. Defaults to the Application Support folder.
        """
        self.directory: Path | None = directory

    @property
    def path(self) -> Path:
        directory = self.directory if self.directory is not None else helpers.settings_folder()
        return directory / PreferenceStore.FILE_NAME

    def _load(self) -> dict:
        success, data = helpers.read_json(self.path)
        if not success:
            if self.path.exists():
                logging.warning('Ignoring preference file: {}'.format(data))
            return {}
        if not isinstance(data, dict):
            logging.warning('Ignoring preference file {}: not a JSON object'.format(self.path))
            return {}
        return data

    def get(self, key: str, default=None):
        return self._load().get(key, default)

    def set(self, key: str, value) -> tuple[bool, str]:
        """
        Saves a preference value.

        :param key: the key of the preference.
        :param value: the value to save. Must be JSON serialisable.

        :returns:

            -success (:py:class:`bool`) - true if the value is saved.

            -data (:py:class:`str`) - error message on failure, or success message.

        """
        preferences = self._load()
        preferences[key] = value
        return helpers.write_json(self.path, preferences)

    def zone_setup_state(self) -> ZoneSetupState:
        """
        Get the setup state of the owned zone. A boolean left by older versions is read as ``DONE`` or ``NOT_STARTED``.

        :return: the stored state, or ``NOT_STARTED`` if none is stored.
        """
        value = self.get(PreferenceStore.ZONE_SETUP_KEY)
        if isinstance(value, bool):
            return ZoneSetupState.DONE if value else ZoneSetupState.NOT_STARTED
        try:
            return ZoneSetupState(value)
        except ValueError:
            return ZoneSetupState.NOT_STARTED

    def set_zone_setup_state(self, state: ZoneSetupState) -> tuple[bool, str]:
        return self.set(PreferenceStore.ZONE_SETUP_KEY, state.value)

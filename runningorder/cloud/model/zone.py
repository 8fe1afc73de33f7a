"""
Contains the identifiers shared by the cloud synchronisation layer: the ``ZoneIdentity`` of a record zone, the
``DatabaseScope`` of a cloud database and the ``RecordType`` taxonomy.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

#: Name of the record zone used by RunningOrder. The same name is used by every owner.
ZONE_NAME: str = "SharedZone"
#: Owner name that CloudKit uses to refer to the signed-in user.
CURRENT_USER_DEFAULT_NAME: str = "__defaultOwner__"


class DatabaseScope(Enum):
    """
    The scope of a cloud database.
    """

    PUBLIC = "public"
    PRIVATE = "private"
    SHARED = "shared"

    @property
    def subscription_id(self) -> str:
        """
        The identifier of the single database subscription RunningOrder registers for this scope.
        """
        return "{}DBSubscription".format(self.value)

    def __str__(self):
        return self.value


class RecordType(Enum):
    """
    The record types stored in the RunningOrder zones.
    """

    SPRINT = "Sprint"
    STORY = "Story"
    STORY_INFORMATION = "StoryInformation"
    SPACE = "Space"


@dataclass(frozen=True)
class ZoneIdentity:
    """
    Identifies a record zone by its name and the name of its owner.
    """

    zone_name: str
    owner_name: str

    @classmethod
    def for_owner(cls, owner_name: str) -> ZoneIdentity:
        """
        Creates the identity of the RunningOrder zone belonging to ``owner_name``.

        :param owner_name: the owner of the zone, either the current user sentinel or a collaborator identity.

        :return: the zone identity.
        """
        return cls(zone_name=ZONE_NAME, owner_name=owner_name)

    def to_json(self) -> dict:
        return {'zoneName': self.zone_name, 'ownerName': self.owner_name}

    def __str__(self):
        return "{}:{}".format(self.zone_name, self.owner_name)

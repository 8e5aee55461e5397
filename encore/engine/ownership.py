"""
encore.engine.ownership — Folder ownership tie-break
=====================================================

Several event types may list the same folder (directly, or because one
type's folder sits inside another's).  Each folder belongs to exactly one
event type at a time, decided by a single rule applied everywhere:

    A challenger takes a folder only when it currently claims strictly
    fewer folders than the incumbent.  Ties keep the incumbent.  An
    unowned folder goes to the challenger.

Every ownership change moves one claim from the loser to the winner.
Because claim counts move as traversal proceeds, the caller re-queues a
folder whenever :meth:`FolderOwnership.resolve` reports a change.
"""

from __future__ import annotations

from encore.engine.state import EventTypeRecord


class FolderOwnership:
    """Folder id → owning event type, with per-type claim counts."""

    def __init__(self, event_types: dict[str, EventTypeRecord]) -> None:
        self._types = event_types
        self._owners: dict[str, str] = {}
        for event_type in event_types.values():
            event_type.claimed = 0

    def owner_of(self, folder_id: str) -> EventTypeRecord | None:
        owner_id = self._owners.get(folder_id)
        return self._types[owner_id] if owner_id is not None else None

    def resolve(self, folder_id: str, challenger_id: str) -> bool:
        """Run the tie-break for *folder_id*.  Returns True if the owner changed."""
        incumbent_id = self._owners.get(folder_id)
        if incumbent_id == challenger_id:
            return False

        challenger = self._types[challenger_id]
        if incumbent_id is not None:
            incumbent = self._types[incumbent_id]
            if challenger.claimed >= incumbent.claimed:
                return False
            incumbent.claimed -= 1

        challenger.claimed += 1
        self._owners[folder_id] = challenger_id
        return True

    def release(self, folder_id: str) -> EventTypeRecord | None:
        """Forget *folder_id* entirely; return the type that owned it."""
        owner_id = self._owners.pop(folder_id, None)
        if owner_id is None:
            return None
        owner = self._types[owner_id]
        owner.claimed -= 1
        return owner

    def __contains__(self, folder_id: str) -> bool:
        return folder_id in self._owners

    def __len__(self) -> int:
        return len(self._owners)

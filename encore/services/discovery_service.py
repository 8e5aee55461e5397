"""
encore.services.discovery_service — Event Discovery
====================================================

Fills ``state.events`` (keyed by source id) from the folders each event
type is configured with.

How it works:
    1. Stored events are already in the map (see ``load_state``).
    2. Every configured folder goes through the ownership tie-break;
       each ownership change queues the folder.
    3. The worklist is drained first-in first-out.  A folder is listed at
       most once, by whichever event type owns it when it is dequeued.
    4. Child folders re-enter the tie-break with the parent's owner as
       challenger.  Spreadsheets and forms become events.
    5. New events are admitted against the speculative ``events_left``
       counter; once it is spent, further new items are skipped.

A folder that can't be listed is dropped from its owner (freeing its
source-folder slot at commit) and the walk continues.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque

from encore.constants import CONTENT_KINDS, ITEM_FOLDER
from encore.engine.ownership import FolderOwnership
from encore.engine.state import EventRecord, EventTypeRecord, SyncState
from encore.errors import ProviderError
from encore.providers.base import FolderItem, FolderProvider

logger = logging.getLogger(__name__)


class EventDiscovery:
    def __init__(self, folders: FolderProvider) -> None:
        self.folders = folders

    async def discover(self, state: SyncState) -> None:
        ownership = FolderOwnership(state.event_types)
        worklist: deque[str] = deque()

        for event_type in state.event_types.values():
            for folder_id in event_type.source_folders:
                if ownership.resolve(folder_id, event_type.id):
                    worklist.append(folder_id)

        visited: set[str] = set()
        admitted = 0
        while worklist:
            folder_id = worklist.popleft()
            if folder_id in visited or folder_id not in ownership:
                continue
            visited.add(folder_id)
            owner = ownership.owner_of(folder_id)

            try:
                children = await self.folders.list_children(folder_id)
            except ProviderError as exc:
                self._drop_folder(state, ownership, folder_id, exc)
                continue

            for item in children:
                if item.kind == ITEM_FOLDER:
                    if ownership.resolve(item.id, owner.id):
                        worklist.append(item.id)
                elif item.kind in CONTENT_KINDS:
                    admitted += self._register_item(state, item, owner)

        logger.info(
            "Tenant %s: visited %d folders, %d new events, %d events known",
            state.tenant.id, len(visited), admitted, len(state.events),
        )

    def _register_item(self, state: SyncState, item: FolderItem, owner: EventTypeRecord) -> int:
        existing = state.events.get(item.id)
        if existing is not None:
            if existing.event_type_id is None:
                existing.event_type_id = owner.id
                existing.value = owner.value
            return 0

        if not state.pending.admit("events_left", state.quota["events_left"]):
            state.warn("Event quota exhausted; skipping %s (%s)", item.name, item.id)
            return 0

        state.events[item.id] = EventRecord(
            id=str(uuid.uuid4()),
            title=item.name,
            source_kind=item.kind,
            source_id=item.id,
            start_date=item.created_at or state.timestamp,
            event_type_id=owner.id,
            value=owner.value,
        )
        return 1

    def _drop_folder(
        self, state: SyncState, ownership: FolderOwnership, folder_id: str, exc: ProviderError
    ) -> None:
        owner = ownership.release(folder_id)
        if owner is not None and folder_id in owner.source_folders:
            owner.source_folders = [f for f in owner.source_folders if f != folder_id]
            owner.folders_changed = True
            state.pending.adjust("source_folders_left", 1)
        state.warn(
            "Folder %s could not be read and was dropped from %s: %s",
            folder_id, owner.title if owner else "its event type", exc,
        )

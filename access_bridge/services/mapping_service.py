"""
================================================================================
FILE: access_bridge/services/mapping_service.py
================================================================================

PURPOSE:
    CRUD store for door mappings with file-backed, debounced persistence.
    The only state in the bridge that survives a restart.

WORKFLOW:
    1. load(): read JSON (array, or {"mappings": [...]}) - missing file = empty
    2. add/update/remove: validate, mutate in memory, schedule a debounced save
    3. Debounce: every mutation marks the store dirty and restarts the timer;
       only the last save in a burst touches disk
    4. save(immediate=True) / cleanup() flush right away

INDEXES:
    - _mappings: cloud lock id → DoorMapping (primary, O(1))
    - _ids:      mapping id → cloud lock id (O(1))
    - controller door id: linear scan (tens to low hundreds of doors)

KEY FACTS:
    - cloudLockId and controllerDoorId are unique across the store
    - A rejected mutation never changes the store
    - asyncio.Lock serializes mutations; a second lock serializes writes
    - Disk writes run in a worker thread (temp file + os.replace)
    - Disk is eventually consistent with memory, never immediately
    - Lookups return copies; callers cannot mutate stored records
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from access_bridge.config import constants
from access_bridge.core.exceptions import (
    DuplicateMappingError,
    MappingNotFoundError,
    ValidationError,
)
from access_bridge.core.notifier import Notifier
from access_bridge.services.schemas import (
    DoorMapping,
    MappingChange,
    MappingsBulkChange,
    MappingUpdate,
)
from access_bridge.utils.helpers import utc_now

logger = logging.getLogger(__name__)

MappingInput = Union[DoorMapping, Dict[str, Any]]
MappingMessage = Union[MappingChange, MappingsBulkChange]


def validate_mapping(data: MappingInput) -> DoorMapping:
    """
    Validate a mapping record.

    Raises:
        ValidationError: With the failing field names in context["fields"]
    """
    try:
        if isinstance(data, DoorMapping):
            return DoorMapping.model_validate(data.model_dump())
        return DoorMapping.model_validate(data)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationError(
            f"Invalid door mapping: {', '.join(fields)}",
            context={"fields": fields},
        ) from e


class MappingService:
    """Door mapping store."""

    def __init__(
        self,
        file_path: Union[str, Path] = constants.MAPPINGS_FILE,
        save_delay: float = constants.MAPPING_SAVE_DELAY_SECONDS,
    ):
        self.file_path = Path(file_path)
        self._save_delay = save_delay

        self._mappings: Dict[str, DoorMapping] = {}
        self._ids: Dict[str, str] = {}

        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._dirty = False
        self._save_task: Optional[asyncio.Task] = None

        self.notifier: Notifier[MappingMessage] = Notifier("MappingService")

        logger.info(f"MappingService initialized with file: {self.file_path}")

    def subscribe(self, callback: Callable[[MappingMessage], Any]) -> Callable[[], None]:
        return self.notifier.subscribe(callback)

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    async def load(self) -> int:
        """
        Load mappings from disk, replacing the in-memory store.

        Returns:
            Number of mappings loaded

        Raises:
            ValidationError: File is not valid JSON, or a record is invalid/duplicated
        """
        logger.info("Loading door mappings from file...")

        raw = await asyncio.to_thread(self._read_file)
        if raw is None:
            logger.info("Mappings file does not exist, starting with empty mappings")
            return 0

        records = self._parse_document(raw)
        mappings, ids = self._build_index(validate_mapping(record) for record in records)

        async with self._lock:
            self._mappings = mappings
            self._ids = ids
            self._dirty = False

        logger.info(f"✓ Loaded {len(mappings)} door mappings")
        self.notifier.emit(MappingsBulkChange(action="loaded", count=len(mappings)))
        return len(mappings)

    async def save(self, immediate: bool = False) -> None:
        """
        Persist the store.

        Args:
            immediate: Write now instead of (re)starting the debounce timer
        """
        if not immediate:
            self._dirty = True
            self._schedule_save()
            return

        self._cancel_scheduled_save()
        await self._write()

    def _schedule_save(self) -> None:
        self._cancel_scheduled_save()
        self._save_task = asyncio.get_running_loop().create_task(
            self._debounced_save(), name="mapping-save"
        )

    def _cancel_scheduled_save(self) -> None:
        task, self._save_task = self._save_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self._save_delay)
        self._save_task = None
        try:
            await self._write()
        except Exception as e:
            logger.error(f"Auto-save of door mappings failed: {str(e)}", exc_info=True)

    async def _write(self) -> None:
        async with self._write_lock:
            records = [m.to_json_dict() for m in self._mappings.values()]
            await asyncio.to_thread(self._write_file, records)
            self._dirty = False

        logger.info(f"Saved {len(records)} door mappings")
        self.notifier.emit(MappingsBulkChange(action="saved", count=len(records)))

    def _read_file(self) -> Optional[str]:
        try:
            return self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write_file(self, records: List[Dict[str, Any]]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
        os.replace(tmp_path, self.file_path)

    @staticmethod
    def _parse_document(raw: str) -> List[Any]:
        try:
            document = json.loads(raw) if raw.strip() else []
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Mappings document is not valid JSON: {str(e)}",
                context={"line": e.lineno, "column": e.colno},
            ) from e

        if isinstance(document, dict):
            document = document.get("mappings", [])
        if not isinstance(document, list):
            raise ValidationError("Mappings document must be an array or {\"mappings\": [...]}")
        return document

    @staticmethod
    def _build_index(mappings: Iterable[DoorMapping]):
        by_lock: Dict[str, DoorMapping] = {}
        ids: Dict[str, str] = {}
        door_ids: Dict[str, str] = {}

        for mapping in mappings:
            if mapping.cloud_lock_id in by_lock:
                raise DuplicateMappingError(
                    f"Duplicate cloud lock id: {mapping.cloud_lock_id}",
                    context={"cloud_lock_id": mapping.cloud_lock_id},
                )
            if mapping.id in ids:
                raise DuplicateMappingError(
                    f"Duplicate mapping id: {mapping.id}", context={"id": mapping.id}
                )
            if mapping.controller_door_id in door_ids:
                raise DuplicateMappingError(
                    f"Duplicate controller door id: {mapping.controller_door_id}",
                    context={"controller_door_id": mapping.controller_door_id},
                )
            by_lock[mapping.cloud_lock_id] = mapping
            ids[mapping.id] = mapping.cloud_lock_id
            door_ids[mapping.controller_door_id] = mapping.cloud_lock_id

        return by_lock, ids

    # ========================================================================
    # CRUD
    # ========================================================================

    async def add_mapping(self, data: MappingInput) -> DoorMapping:
        """
        Add a mapping. createdAt/updatedAt are stamped now.

        Raises:
            ValidationError: Missing/invalid fields
            DuplicateMappingError: Lock id, door id or mapping id already used
        """
        mapping = validate_mapping(data)

        async with self._lock:
            self._check_unique(mapping)
            now = utc_now()
            mapping = mapping.model_copy(update={"created_at": now, "updated_at": now})
            self._mappings[mapping.cloud_lock_id] = mapping
            self._ids[mapping.id] = mapping.cloud_lock_id

        logger.info(f"Door mapping added: {mapping.name} ({mapping.cloud_lock_id} ↔ {mapping.controller_door_id})")
        await self.save()
        self.notifier.emit(MappingChange(action="added", mapping=mapping.model_copy()))
        return mapping.model_copy()

    async def update_mapping(
        self, cloud_lock_id: str, updates: Union[MappingUpdate, Dict[str, Any]]
    ) -> DoorMapping:
        """
        Merge updates into an existing mapping.

        id, cloudLockId and createdAt are preserved; updatedAt is refreshed.

        Raises:
            MappingNotFoundError: No mapping for cloud_lock_id
            ValidationError / DuplicateMappingError: Merged record is invalid
        """
        if not isinstance(updates, MappingUpdate):
            try:
                updates = MappingUpdate.model_validate(updates)
            except PydanticValidationError as e:
                fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
                raise ValidationError(
                    f"Invalid mapping update: {', '.join(fields)}",
                    context={"fields": fields},
                ) from e
        changes = updates.changes()

        async with self._lock:
            existing = self._mappings.get(cloud_lock_id)
            if existing is None:
                raise MappingNotFoundError(
                    f"No mapping found for lock ID: {cloud_lock_id}",
                    context={"cloud_lock_id": cloud_lock_id},
                )

            merged = existing.model_dump()
            merged.update(changes)
            merged.update(
                id=existing.id,
                cloud_lock_id=existing.cloud_lock_id,
                created_at=existing.created_at,
                updated_at=utc_now(),
            )
            updated = validate_mapping(merged)

            owner = self._find_by_door_id(updated.controller_door_id)
            if owner is not None and owner.cloud_lock_id != cloud_lock_id:
                raise DuplicateMappingError(
                    f"Controller door {updated.controller_door_id} is already mapped "
                    f"to lock {owner.cloud_lock_id}",
                    context={"controller_door_id": updated.controller_door_id},
                )

            self._mappings[cloud_lock_id] = updated

        logger.info(f"Door mapping updated: {updated.name} ({cloud_lock_id})")
        await self.save()
        self.notifier.emit(MappingChange(action="updated", mapping=updated.model_copy()))
        return updated.model_copy()

    async def remove_mapping(self, cloud_lock_id: str) -> DoorMapping:
        """
        Raises:
            MappingNotFoundError: No mapping for cloud_lock_id
        """
        async with self._lock:
            mapping = self._mappings.pop(cloud_lock_id, None)
            if mapping is None:
                raise MappingNotFoundError(
                    f"No mapping found for lock ID: {cloud_lock_id}",
                    context={"cloud_lock_id": cloud_lock_id},
                )
            self._ids.pop(mapping.id, None)

        logger.info(f"Door mapping removed: {mapping.name} ({cloud_lock_id})")
        await self.save()
        self.notifier.emit(MappingChange(action="removed", mapping=mapping))
        return mapping.model_copy()

    async def clear_all(self) -> int:
        """Remove every mapping and save immediately."""
        async with self._lock:
            count = len(self._mappings)
            self._mappings = {}
            self._ids = {}

        await self.save(immediate=True)
        logger.warning(f"Cleared all door mappings ({count} removed)")
        self.notifier.emit(MappingsBulkChange(action="cleared", count=count))
        return count

    def _check_unique(self, mapping: DoorMapping) -> None:
        if mapping.cloud_lock_id in self._mappings:
            raise DuplicateMappingError(
                f"Mapping already exists for lock ID: {mapping.cloud_lock_id}",
                context={"cloud_lock_id": mapping.cloud_lock_id},
            )
        if mapping.id in self._ids:
            raise DuplicateMappingError(
                f"Mapping ID already in use: {mapping.id}", context={"id": mapping.id}
            )
        owner = self._find_by_door_id(mapping.controller_door_id)
        if owner is not None:
            raise DuplicateMappingError(
                f"Controller door {mapping.controller_door_id} is already mapped "
                f"to lock {owner.cloud_lock_id}",
                context={"controller_door_id": mapping.controller_door_id},
            )

    def _find_by_door_id(self, door_id: str) -> Optional[DoorMapping]:
        for mapping in self._mappings.values():
            if mapping.controller_door_id == door_id:
                return mapping
        return None

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    def get_mapping(self, cloud_lock_id: str) -> Optional[DoorMapping]:
        mapping = self._mappings.get(cloud_lock_id)
        return mapping.model_copy() if mapping else None

    def get_mapping_by_id(self, mapping_id: str) -> Optional[DoorMapping]:
        lock_id = self._ids.get(mapping_id)
        return self.get_mapping(lock_id) if lock_id else None

    def get_mapping_by_controller_door_id(self, door_id: str) -> Optional[DoorMapping]:
        mapping = self._find_by_door_id(door_id)
        return mapping.model_copy() if mapping else None

    def get_all_mappings(self) -> List[DoorMapping]:
        return [m.model_copy() for m in self._mappings.values()]

    def get_enabled_mappings(self) -> List[DoorMapping]:
        return [m.model_copy() for m in self._mappings.values() if m.enabled]

    def get_mappings_by_site(self, site_id: str) -> List[DoorMapping]:
        return [m.model_copy() for m in self._mappings.values() if m.site_id == site_id]

    def has_mapping(self, cloud_lock_id: str) -> bool:
        return cloud_lock_id in self._mappings

    def count(self) -> int:
        return len(self._mappings)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    # ========================================================================
    # IMPORT / EXPORT
    # ========================================================================

    def export_mappings(self) -> str:
        return json.dumps([m.to_json_dict() for m in self._mappings.values()], indent=2)

    async def import_mappings(self, document: str, merge: bool = False) -> int:
        """
        Import mappings from a JSON document.

        The whole document is validated before the store changes.

        Args:
            document: JSON array or {"mappings": [...]}
            merge: Keep existing mappings (imported records must not collide)

        Returns:
            Number of mappings imported
        """
        incoming = [validate_mapping(r) for r in self._parse_document(document)]

        async with self._lock:
            base = list(self._mappings.values()) if merge else []
            mappings, ids = self._build_index([*base, *incoming])
            self._mappings = mappings
            self._ids = ids

        await self.save(immediate=True)
        logger.info(f"Imported {len(incoming)} door mappings (merge={merge})")
        self.notifier.emit(MappingsBulkChange(action="imported", count=len(incoming)))
        return len(incoming)

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    async def cleanup(self) -> None:
        """Cancel a pending debounced save and flush if there are unsaved changes."""
        pending = self._save_task is not None and not self._save_task.done()
        self._cancel_scheduled_save()
        if self._dirty or pending:
            await self._write()
        logger.info("MappingService cleanup complete")

from __future__ import annotations
from typing import Any, Dict, Iterable, Mapping, Optional, Set


class LockState:
    """Local view of who is editing what, for one signed-in admin."""

    def __init__(self, my_label: Optional[str] = None) -> None:
        self.my_label = my_label
        self.is_connected = False
        self.assigned_role: Optional[str] = None
        self.locked_entities: Set[str] = set()
        self.lock_ownership: Dict[str, str] = {}
        self.my_editing_entities: Set[str] = set()

    def apply_lock_acquired(self, entity_id: str, holder_label: Optional[str]) -> None:
        self.locked_entities.add(entity_id)
        if holder_label:
            self.lock_ownership[entity_id] = holder_label
        if holder_label and holder_label == self.my_label:
            # Same admin in another tab
            self.my_editing_entities.add(entity_id)

    def apply_lock_released(self, entity_id: str) -> None:
        self.locked_entities.discard(entity_id)
        self.lock_ownership.pop(entity_id, None)
        self.my_editing_entities.discard(entity_id)

    def load_snapshot(self, locks: Iterable[Mapping[str, Any]]) -> None:
        """Replace lock state with the authoritative list of active locks."""
        locked: Set[str] = set()
        ownership: Dict[str, str] = {}
        editing: Set[str] = set()
        for lock in locks:
            entity_id = str(lock["locked_entity_id"])
            label = lock.get("lock_holder_label")
            locked.add(entity_id)
            if label:
                ownership[entity_id] = label
            if label and label == self.my_label:
                editing.add(entity_id)
        self.locked_entities = locked
        self.lock_ownership = ownership
        self.my_editing_entities = editing

    def start_editing(self, entity_id: str) -> None:
        self.locked_entities.add(entity_id)
        if self.my_label:
            self.lock_ownership[entity_id] = self.my_label
        self.my_editing_entities.add(entity_id)

    def end_editing(self, entity_id: str) -> None:
        self.apply_lock_released(entity_id)

    def is_locked_by(self, entity_id: str) -> Optional[str]:
        if entity_id not in self.locked_entities:
            return None
        return self.lock_ownership.get(entity_id)

    def am_i_editing(self, entity_id: str) -> bool:
        return entity_id in self.my_editing_entities

    def clear(self) -> None:
        self.is_connected = False
        self.assigned_role = None
        self.locked_entities.clear()
        self.lock_ownership.clear()
        self.my_editing_entities.clear()

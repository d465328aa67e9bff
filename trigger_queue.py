from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable


@dataclass(frozen=True)
class Trigger:
    handle: int
    when: datetime


class TriggerQueue:
    """Pending wakeups of test schedulers, at most one per scheduler handle.

    Entries are keyed by the integer handle a context hands out when a
    scheduler is created; the scheduler object itself is kept in a side table
    so it can be notified when its trigger fires. Snapshots are ordered by
    fire time, with ties broken by handle (creation order).
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._triggers: dict[int, Trigger] = {}
        self._owners: dict[int, Any] = {}

    def set_next(self, handle: int, owner: Any, when: datetime | None) -> None:
        with self.lock:
            self._set_next_unlocked(handle, owner, when)

    def _set_next_unlocked(self, handle: int, owner: Any, when: datetime | None) -> None:
        self._triggers.pop(handle, None)
        self._owners.pop(handle, None)
        if when is not None:
            self._triggers[handle] = Trigger(handle=handle, when=when)
            self._owners[handle] = owner

    def get(self, handle: int) -> datetime | None:
        with self.lock:
            trigger = self._triggers.get(handle)
        return trigger.when if trigger is not None else None

    def sorted_snapshot(self) -> list[Trigger]:
        with self.lock:
            return self._sorted_unlocked()

    def _sorted_unlocked(self) -> list[Trigger]:
        return sorted(self._triggers.values(), key=lambda t: (t.when, t.handle))

    def earliest(self) -> datetime | None:
        snapshot = self.sorted_snapshot()
        if not snapshot:
            return None
        return snapshot[0].when

    def pop_batch(
        self,
        through: datetime,
        rearm: Callable[[Any], datetime | None],
    ) -> list[Any]:
        """Remove every trigger due at or before `through` and return its owner.

        `rearm(owner)` is called for each fired owner while the lock is held;
        a non-None result is inserted as that owner's next trigger before any
        other thread can observe the queue.
        """
        fired: list[Any] = []
        with self.lock:
            for trigger in self._sorted_unlocked():
                if trigger.when > through:
                    break
                owner = self._owners[trigger.handle]
                fired.append(owner)
                self._set_next_unlocked(trigger.handle, owner, rearm(owner))
        return fired

    def clear(self) -> None:
        with self.lock:
            self._clear_unlocked()

    def _clear_unlocked(self) -> None:
        self._triggers.clear()
        self._owners.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._triggers)

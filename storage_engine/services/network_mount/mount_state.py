import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from ...core.events.event_bus import DomainEventBus
from ...core.events.storage_events import MountStateChangedEvent
from ...core.exceptions import InvalidTransitionError
from ...models import MountState, NetworkMount


class MountStateMachine:
    """
    Eneste sted hvor NetworkMount.state må ændres.

    1. Validerer overgangen mod tabellen herunder.
    2. Opdaterer NetworkMount.
    3. Publicerer MountStateChangedEvent.
    """

    def __init__(self, mount: NetworkMount, event_bus: DomainEventBus):
        self._mount = mount
        self._event_bus = event_bus
        self._lock = asyncio.Lock()

        self._transitions: Dict[MountState, Set[MountState]] = {
            MountState.UNMOUNTED: {
                MountState.MOUNTED,
                MountState.UNREACHABLE,
                MountState.RECOVERING,
            },
            MountState.MOUNTED: {
                MountState.DEGRADED,
                MountState.RECOVERING,
            },
            MountState.DEGRADED: {
                MountState.MOUNTED,
                MountState.UNREACHABLE,
                MountState.RECOVERING,
            },
            MountState.UNREACHABLE: {
                MountState.MOUNTED,
                MountState.RECOVERING,
            },
            MountState.RECOVERING: {
                MountState.MOUNTED,
                MountState.UNREACHABLE,
            },
        }

    @property
    def state(self) -> MountState:
        return self._mount.state

    def can_transition(self, new_state: MountState) -> bool:
        return new_state == self._mount.state or new_state in self._transitions[self._mount.state]

    async def transition(self, new_state: MountState, reason: Optional[str] = None) -> NetworkMount:
        """
        Move the mount to new_state.

        Same-state transitions are no-ops and publish nothing.

        Raises:
            InvalidTransitionError: transition not in the table.
        """
        event: Optional[MountStateChangedEvent] = None

        async with self._lock:
            old_state = self._mount.state
            if new_state == old_state:
                if reason:
                    self._mount.last_error = reason
                return self._mount

            if new_state not in self._transitions[old_state]:
                raise InvalidTransitionError(self._mount.mount_point, old_state.value, new_state.value)

            logging.info(f"Mount transition: {self._mount.mount_point} | {old_state.value} -> {new_state.value}")
            self._mount.state = new_state
            self._mount.last_transition_at = datetime.now()
            self._mount.last_error = None if new_state == MountState.MOUNTED else reason

            event = MountStateChangedEvent(
                mount_point=self._mount.mount_point,
                old_state=old_state,
                new_state=new_state,
                reason=reason,
            )

        # Outside the lock so slow subscribers never block the next transition
        await self._event_bus.publish(event)
        return self._mount

    async def transition_via_mounted(self, new_state: MountState, reason: Optional[str] = None) -> NetworkMount:
        """Reach Degraded from a state that first has to pass through Mounted."""
        if not self.can_transition(new_state):
            await self.transition(MountState.MOUNTED)
        return await self.transition(new_state, reason)

    async def transition_via_degraded(self, new_state: MountState, reason: Optional[str] = None) -> NetworkMount:
        """Reach Unreachable from Mounted, which first has to drop to Degraded."""
        if self.state == MountState.MOUNTED and not self.can_transition(new_state):
            await self.transition(MountState.DEGRADED, reason)
        return await self.transition(new_state, reason)

"""Applies reconciler actions to the Outlook calendar."""
import logging
from typing import List

from dispatch.async_dispatcher import AsyncDispatcher
from processor.models import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    Action,
    SyncResult,
)

logger = logging.getLogger(__name__)


def group_actions(actions: List[Action]) -> List[List[Action]]:
    """
    Split an action list into units that must run sequentially.

    Actions sharing a group key form one unit in their original order;
    ungrouped actions are units of their own. Units are ordered by their
    first action.
    """
    units: List[List[Action]] = []
    by_group = {}
    for action in actions:
        if action.group is None:
            units.append([action])
            continue
        unit = by_group.get(action.group)
        if unit is None:
            unit = by_group[action.group] = []
            units.append(unit)
        unit.append(action)
    return units


class ActionExecutor:
    """Executor running independent action units concurrently."""

    def __init__(self, calendar_client, dispatcher: AsyncDispatcher, dry_run: bool = False):
        """
        Initialize the executor.

        Args:
            calendar_client: GraphCalendarClient used for the writes
            dispatcher: Dispatcher whose concurrency limit bounds the writes
            dry_run: Log actions instead of applying them
        """
        self.calendar_client = calendar_client
        self.dispatcher = dispatcher
        self.dry_run = dry_run

    async def execute(self, actions: List[Action]) -> SyncResult:
        """
        Apply every action.

        Independent units run concurrently; actions within a unit run one
        after another, so a create never starts before its paired delete
        has finished.

        Args:
            actions: Ordered action list from the reconciler

        Returns:
            SyncResult with counts of applied actions

        Raises:
            RemoteRequestError: First failure after all units have finished
        """
        result = SyncResult()
        units = group_actions(actions)
        logger.info(f"Applying {len(actions)} actions in {len(units)} units")

        try:
            await self.dispatcher.gather(self._run_unit(unit, result) for unit in units)
        except Exception as e:
            result.errors.append(f"{type(e).__name__}: {e}")
            logger.error(
                f"Sync batch failed after {result.created} created, "
                f"{result.updated} updated, {result.deleted} deleted: {e}"
            )
            raise

        logger.info(
            f"Sync complete: {result.created} created, {result.updated} updated, "
            f"{result.deleted} deleted"
        )
        return result

    async def _run_unit(self, unit: List[Action], result: SyncResult) -> None:
        for action in unit:
            await self.apply(action)
            if action.kind == ACTION_CREATE:
                result.created += 1
            elif action.kind == ACTION_UPDATE:
                result.updated += 1
            elif action.kind == ACTION_DELETE:
                result.deleted += 1

    async def apply(self, action: Action) -> None:
        """Send one action to the calendar."""
        if self.dry_run:
            logger.info(f"[dry run] {action.describe()}")
            return

        logger.info(f"Applying {action.describe()}")
        if action.kind == ACTION_CREATE:
            await self.calendar_client.create_event(action.calendar_id, action.payload)
        elif action.kind == ACTION_UPDATE:
            await self.calendar_client.update_event(action.event_id, action.payload)
        elif action.kind == ACTION_DELETE:
            await self.calendar_client.delete_event(action.event_id)
        else:
            raise ValueError(f"unknown action kind '{action.kind}'")

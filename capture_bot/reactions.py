"""
Per-message reaction counts.

The platform reports the updated count for one symbol on every add/remove
event. That count is folded into the message's reaction map with a
read-merge-write:

1. read the stored map (a miss means the message was never ingested),
2. merge the event into it with ``merge_reaction``,
3. write back only the changed symbol, so a concurrent event for another
   symbol on the same message is not overwritten.
"""

import logging
from typing import Optional

from .models import ReactionMap

logger = logging.getLogger(__name__)


class MessageNotFoundError(LookupError):
    """A reaction arrived for a message that was never stored."""


def merge_reaction(reactions: ReactionMap, symbol: str, count: int, added: bool) -> ReactionMap:
    """Return a new map with one reaction event applied.

    Additions, and removals that leave a positive count, set the symbol to
    ``count``. A removal that reaches zero drops the symbol entirely.
    Counts are never stored below zero.
    """
    merged = dict(reactions)
    count = max(0, int(count))
    if count > 0:
        merged[symbol] = count
    else:
        if added:
            logger.warning(f"Reaction {symbol} added with count 0, dropping key")
        merged.pop(symbol, None)
    return merged


class ReactionAggregator:
    def __init__(self, database):
        self.database = database

    async def apply_reaction(self, message_id: str, symbol: str, count: int, added: bool) -> ReactionMap:
        """Fold one reaction event into the stored map and return the result.

        Raises ``MessageNotFoundError`` when the message row does not exist.
        """
        message_id = str(message_id)
        current: Optional[ReactionMap] = await self.database.fetch_reactions(message_id)
        if current is None:
            raise MessageNotFoundError(message_id)
        logger.debug(f"Current reactions for {message_id}: {current}")

        merged = merge_reaction(current, symbol, count, added)
        stored = await self.database.write_reaction(message_id, symbol, merged.get(symbol))
        if stored is None:
            # row vanished between read and write
            raise MessageNotFoundError(message_id)

        logger.debug(f"Updated reactions for {message_id}: {stored}")
        return stored

"""
Action Dispatcher — routes a queue item to the handler for its action kind.

The handler table is built once at construction and must cover every
ActionKind. Dispatch never raises: invalid input, unknown actions,
payload schema violations and handler faults all become failed outcomes,
so a single malformed item can never abort a poll cycle.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from channels.base import DeliveryRetrier, MessagingSurface
from core.handlers import HANDLER_TYPES, ActionHandler
from models.schemas import ActionKind, DispatchOutcome, FailureReason, PayloadError, QueueItem
from notifications.formatting import DEFAULT_CHUNK_LIMIT


class ActionDispatcher:
    """
    Usage:
        dispatcher = ActionDispatcher(surface, guild_id="123")
        outcome = await dispatcher.dispatch(item)
    """

    def __init__(
        self,
        surface: MessagingSurface,
        guild_id: str = "",
        retrier: Optional[DeliveryRetrier] = None,
        chunk_limit: int = DEFAULT_CHUNK_LIMIT,
        logger=None,
        handlers: Optional[Iterable[ActionHandler]] = None,
    ):
        self._log = logger or structlog.get_logger().bind(component="dispatcher")
        self.retrier = retrier or DeliveryRetrier()

        if handlers is None:
            handlers = [
                handler_type(surface, self.retrier, guild_id=guild_id, chunk_limit=chunk_limit)
                for handler_type in HANDLER_TYPES
            ]
        self._handlers: dict[ActionKind, ActionHandler] = {h.kind: h for h in handlers}

        missing = [kind.value for kind in ActionKind if kind not in self._handlers]
        if missing:
            raise ValueError(f"No handler registered for: {', '.join(missing)}")

    @property
    def handlers(self) -> dict[ActionKind, ActionHandler]:
        return dict(self._handlers)

    async def dispatch(self, item: QueueItem) -> DispatchOutcome:
        action = item.action
        if not action or not isinstance(action, str):
            self._log.warning("queue_item_missing_action", item_id=item.id or "unknown")
            return DispatchOutcome.fail(FailureReason.INVALID_ACTION)

        try:
            kind = ActionKind(action)
        except ValueError:
            self._log.warning("unsupported_action", item_id=item.id, action=action)
            return DispatchOutcome.fail(FailureReason.UNSUPPORTED_ACTION)

        handler = self._handlers[kind]
        try:
            payload = handler.parse(item.payload)
            return await handler.handle(item, payload)
        except PayloadError as e:
            self._log.warning("payload_rejected",
                              item_id=item.id,
                              action=kind.value,
                              reason=e.reason.value,
                              detail=e.detail)
            return DispatchOutcome.fail(e.reason)
        except Exception as e:
            self._log.error("handler_error",
                            item_id=item.id,
                            action=kind.value,
                            error=str(e),
                            exc_info=True)
            return DispatchOutcome.fail(FailureReason.HANDLER_ERROR)

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]

# Event names
AUTH_REGISTERED = "auth.registered"
WORKSPACE_INVITE = "workspace.invite"
WORKSPACE_MEMBER_ADDED = "workspace.member.added"
WORKSPACE_MEMBER_ROLE_UPDATED = "workspace.member.role.updated"
WORKSPACE_MEMBER_REMOVED = "workspace.member.removed"
WORKSPACE_MEMBER_LEFT = "workspace.member.left"
WORKSPACE_INVITATION_ACCEPTED = "workspace.invitation.accepted"
WORKSPACE_INVITATION_DECLINED = "workspace.invitation.declined"
PROJECT_CREATED = "project.created"
LIST_CREATED = "list.created"
LIST_DELETED = "list.deleted"


class EventBus:
    """
    In-process publish/subscribe bus.

    publish() only enqueues, so the caller never waits on (or sees errors
    from) a listener. Delivery is at-most-once: events still queued when the
    process stops are lost.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()

    def subscribe(self, name: str, handler: Handler):
        self._handlers[name].append(handler)

    def on(self, name: str):
        def decorator(handler: Handler) -> Handler:
            self.subscribe(name, handler)
            return handler
        return decorator

    def publish(self, name: str, payload: dict[str, Any]):
        try:
            self._queue.put_nowait((name, payload))
            logger.debug("[EVENTS] Published %s", name)
        except Exception:
            logger.exception("[EVENTS] Could not publish %s", name)

    async def _dispatch(self, name: str, payload: dict[str, Any]):
        for handler in list(self._handlers.get(name, [])):
            try:
                await handler(payload)
            except Exception:
                logger.exception("[EVENTS] Handler %s failed for %s", getattr(handler, "__name__", handler), name)

    async def run(self):
        """Worker loop, started from the app lifespan."""
        logger.info("[EVENTS] Event bus worker started.")
        while True:
            name, payload = await self._queue.get()
            try:
                await self._dispatch(name, payload)
            finally:
                self._queue.task_done()

    async def drain(self):
        """Deliver everything queued so far on the current task."""
        while not self._queue.empty():
            name, payload = self._queue.get_nowait()
            try:
                await self._dispatch(name, payload)
            finally:
                self._queue.task_done()


event_bus = EventBus()

"""
Conversation engine.

A ``Stage`` holds a registry of named ``Flow`` objects and, per chat, the name
of the flow currently active. Incoming events are dispatched to the active
flow's handlers in a fixed precedence order:

1. button handlers (callback payload, exact string or regex with capture groups)
2. message-kind handlers (text, photo, document, ...)
3. "any message" handlers

The first match in registration order wins; unmatched events are dropped.
When no flow is active, events go to the top-level ``Stage.root`` router.

Transitions requested by a handler (``ctx.enter``, ``ctx.leave``,
``ctx.finish``, ``ctx.reenter``) are queued and applied after the handler
returns. Entering a flow while another one is active is a *switch*: the old
flow's leave hook does not run and scratch data is carried over.

Events for one chat are processed one at a time, in arrival order. An
exception raised by a handler is logged, answered with a generic failure
reply, and leaves the flow state untouched unless the handler asked to leave
before raising.
"""

import asyncio
import inspect
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, Tuple, Union

from .models import DispatchRecord, EventKind, InboundEvent
from .session_store import SessionStore

logger = logging.getLogger(__name__)

Handler = Callable[["FlowContext"], Awaitable[None]]
DispatchHook = Callable[[DispatchRecord], Any]

FAILURE_TEXT = "❌ Something went wrong. Please try again."


@dataclass
class ButtonRoute:
    pattern: Union[str, Pattern]
    handler: Handler
    action: str

    def match(self, payload: str) -> Optional[Tuple[Optional[str], ...]]:
        if isinstance(self.pattern, str):
            return () if payload == self.pattern else None
        found = self.pattern.fullmatch(payload)
        if found is None:
            return None
        return found.groups()


@dataclass
class InputRoute:
    kind: EventKind
    handler: Handler
    action: str
    text: Optional[str] = None

    def match(self, event: InboundEvent) -> bool:
        if self.kind != EventKind.ANY and self.kind != event.kind:
            return False
        if self.text is not None:
            return (event.text or "").strip() == self.text
        return True


class Router:
    """Ordered button and input routes."""

    def __init__(self):
        self.buttons: List[ButtonRoute] = []
        self.inputs: List[InputRoute] = []

    def on_button(self, pattern: Union[str, Pattern], action: Optional[str] = None):
        """Register a button handler for an exact payload or a compiled regex."""
        def decorator(handler: Handler) -> Handler:
            self.add_button(pattern, handler, action)
            return handler
        return decorator

    def on_input(self, kind: EventKind = EventKind.TEXT, text: Optional[str] = None, action: Optional[str] = None):
        """Register a handler for a message kind, optionally an exact text."""
        def decorator(handler: Handler) -> Handler:
            self.add_input(kind, handler, text=text, action=action)
            return handler
        return decorator

    def add_button(self, pattern: Union[str, Pattern], handler: Handler, action: Optional[str] = None) -> None:
        if isinstance(pattern, str) and pattern.startswith("^"):
            pattern = re.compile(pattern)
        self.buttons.append(ButtonRoute(pattern, handler, action or handler.__name__))

    def add_input(
        self,
        kind: EventKind,
        handler: Handler,
        text: Optional[str] = None,
        action: Optional[str] = None,
    ) -> None:
        if kind == EventKind.CALLBACK:
            raise ValueError("Use add_button for callback handlers")
        self.inputs.append(InputRoute(kind, handler, action or handler.__name__, text))

    def resolve(self, event: InboundEvent) -> Optional[Tuple[Handler, Tuple[Optional[str], ...], str]]:
        if event.is_callback:
            payload = event.callback_data or ""
            for route in self.buttons:
                args = route.match(payload)
                if args is not None:
                    return route.handler, args, route.action
            return None

        for route in self.inputs:
            if route.kind != EventKind.ANY and route.match(event):
                return route.handler, (), route.action
        for route in self.inputs:
            if route.kind == EventKind.ANY and route.match(event):
                return route.handler, (), route.action
        return None


class Flow(Router):
    """A named conversational state machine."""

    def __init__(self, name: str, idle_timeout_ms: Optional[int] = None, requires: Iterable[str] = ()):
        super().__init__()
        self.name = name
        self.idle_timeout_ms = idle_timeout_ms
        self.requires = tuple(requires)
        self.enter_handler: Optional[Handler] = None
        self.leave_handler: Optional[Handler] = None

    def on_enter(self, handler: Handler) -> Handler:
        self.enter_handler = handler
        return handler

    def on_leave(self, handler: Handler) -> Handler:
        self.leave_handler = handler
        return handler

    def __repr__(self) -> str:
        return f"<Flow {self.name}>"


@dataclass
class Transition:
    op: str  # enter, leave, reenter
    name: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    clear_scratch: bool = False


class FlowContext:
    """Everything a handler needs: the event, scratch data, replies and transitions."""

    def __init__(
        self,
        stage: "Stage",
        event: InboundEvent,
        flow: Optional[str],
        args: Tuple[Optional[str], ...] = (),
        action: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        self.stage = stage
        self.event = event
        self.flow = flow
        self.args = args
        self.action = action
        self.params = params or {}
        self.audit_detail: Optional[str] = None
        self._transitions: List[Transition] = []

    @property
    def chat_id(self) -> int:
        return self.event.chat_id

    @property
    def user_id(self) -> int:
        return self.event.user_id

    @property
    def text(self) -> str:
        return (self.event.text or "").strip()

    @property
    def transport(self):
        return self.stage.transport

    # Scratch data

    @property
    def scratch(self) -> Dict[str, Any]:
        return self.stage.sessions.get(self.chat_id)

    def get(self, key: str, default: Any = None) -> Any:
        return self.scratch.get(key, default)

    def update(self, **patch: Any) -> None:
        self.stage.sessions.set(self.chat_id, patch)

    def pop(self, *keys: str) -> None:
        self.stage.sessions.pop(self.chat_id, *keys)

    def clear_scratch(self) -> None:
        self.stage.sessions.clear(self.chat_id)

    # Replies

    async def reply(self, text: str, reply_markup=None, parse_mode: Optional[str] = "HTML"):
        return await self.transport.send_text(self.chat_id, text, reply_markup=reply_markup, parse_mode=parse_mode)

    async def reply_document(self, data: bytes, filename: str, caption: Optional[str] = None):
        return await self.transport.send_document(self.chat_id, data, filename=filename, caption=caption)

    async def edit(self, text: str, reply_markup=None):
        """Edit the message carrying the pressed button, or reply when there is none."""
        if self.event.is_callback and self.event.message_id is not None:
            return await self.transport.edit_message(self.chat_id, self.event.message_id, text, reply_markup=reply_markup)
        return await self.reply(text, reply_markup=reply_markup)

    async def answer(self, text: Optional[str] = None) -> None:
        if self.event.is_callback and not self.event.answered and self.event.callback_id:
            self.event.answered = True
            await self.transport.answer_callback(self.event.callback_id, text)

    # Transitions (applied after the handler returns)

    def enter(self, name: str, **params: Any) -> None:
        self._transitions.append(Transition("enter", name=name, params=params))

    def leave(self) -> None:
        self._transitions.append(Transition("leave"))

    def finish(self) -> None:
        """Leave the flow and clear scratch data."""
        self._transitions.append(Transition("leave", clear_scratch=True))

    def reenter(self) -> None:
        self._transitions.append(Transition("reenter"))

    def take_transitions(self) -> List[Transition]:
        transitions, self._transitions = self._transitions, []
        return transitions


class Stage:
    """Flow registry and per-chat dispatcher."""

    def __init__(
        self,
        transport,
        sessions: Optional[SessionStore] = None,
        failure_text: str = FAILURE_TEXT,
        unhandled_text: Optional[str] = None,
        max_transition_depth: int = 8,
    ):
        self.transport = transport
        self.sessions = sessions or SessionStore()
        self.failure_text = failure_text
        self.unhandled_text = unhandled_text
        self.max_transition_depth = max_transition_depth
        self.root = Router()
        self._flows: Dict[str, Flow] = {}
        self._commands: Dict[str, Handler] = {}
        self._hooks: List[DispatchHook] = []
        self._locks: Dict[int, asyncio.Lock] = {}
        # dispatches holding or waiting on each chat lock
        self._lock_users: Dict[int, int] = {}

    # Registry

    def register(self, *flows: Flow) -> None:
        for flow in flows:
            if flow.name in self._flows:
                raise ValueError(f"Flow {flow.name!r} is already registered")
            self._flows[flow.name] = flow

    def flow(self, name: str) -> Optional[Flow]:
        return self._flows.get(name)

    @property
    def flow_names(self) -> List[str]:
        return list(self._flows)

    @property
    def command_names(self) -> List[str]:
        return list(self._commands)

    def __contains__(self, name: str) -> bool:
        return name in self._flows

    def command(self, name: str):
        def decorator(handler: Handler) -> Handler:
            self._commands[name] = handler
            return handler
        return decorator

    def add_dispatch_hook(self, hook: DispatchHook) -> None:
        self._hooks.append(hook)

    def active_flow(self, chat_id: int) -> Optional[str]:
        return self.sessions.active_flow(chat_id)

    # Public transitions (acquire the chat lock)

    async def enter_flow(self, event: InboundEvent, name: str, **params: Any) -> bool:
        async with self._chat_lock(event.chat_id):
            return await self._enter(event, name, params, depth=0)

    async def leave_flow(self, event: InboundEvent, clear_scratch: bool = False) -> bool:
        async with self._chat_lock(event.chat_id):
            return await self._leave(event, clear_scratch, depth=0)

    async def reenter_flow(self, event: InboundEvent) -> bool:
        async with self._chat_lock(event.chat_id):
            return await self._reenter(event, depth=0)

    # Dispatch

    async def dispatch(self, event: InboundEvent) -> bool:
        """Route one event. Returns True if a handler ran without raising."""
        async with self._chat_lock(event.chat_id):
            try:
                return await self._dispatch_locked(event)
            finally:
                if event.is_callback and event.callback_id and not event.answered:
                    await self._safe_answer(event)

    async def run_command(self, name: str, event: InboundEvent) -> bool:
        """Run a slash command; commands are honoured whatever flow is active."""
        handler = self._commands.get(name)
        if handler is None:
            logger.warning(f"Unknown command /{name} from chat {event.chat_id}")
            return False
        async with self._chat_lock(event.chat_id):
            self.sessions.touch(event.chat_id)
            ctx = FlowContext(self, event, self.sessions.active_flow(event.chat_id), action=f"/{name}")
            return await self._handle(ctx, handler)

    async def _dispatch_locked(self, event: InboundEvent) -> bool:
        chat_id = event.chat_id
        self.sessions.touch(chat_id)
        flow_name = self.sessions.active_flow(chat_id)
        router: Router = self.root
        if flow_name is not None:
            flow = self._flows.get(flow_name)
            if flow is None:
                logger.error(f"Chat {chat_id} has unregistered active flow {flow_name!r}; resetting")
                self.sessions.set_active_flow(chat_id, None)
                flow_name = None
            else:
                router = flow

        resolved = router.resolve(event)
        if resolved is None:
            logger.debug(f"Dropped {event.kind.value} event for chat {chat_id} in flow {flow_name!r}")
            if flow_name is not None and self.unhandled_text:
                await self._safe_send(chat_id, self.unhandled_text)
            return False

        handler, args, action = resolved
        ctx = FlowContext(self, event, flow_name, args=args, action=action)
        return await self._handle(ctx, handler)

    async def _handle(self, ctx: FlowContext, handler: Handler) -> bool:
        ok = await self._run(ctx, handler)
        if not ok:
            return False
        await self._apply(ctx, depth=0)
        await self._fire_hooks(ctx)
        return True

    async def _run(self, ctx: FlowContext, handler: Handler) -> bool:
        try:
            await handler(ctx)
            return True
        except Exception:
            logger.exception(
                f"Handler {getattr(handler, '__name__', handler)!r} failed "
                f"(chat={ctx.chat_id}, flow={ctx.flow!r}, kind={ctx.event.kind.value})"
            )
            await self._safe_send(ctx.chat_id, self.failure_text)
            # Honour an explicit leave requested before the failure
            for transition in ctx.take_transitions():
                if transition.op == "leave":
                    self.sessions.set_active_flow(ctx.chat_id, None)
                    if transition.clear_scratch:
                        self.sessions.clear(ctx.chat_id)
            return False

    async def _apply(self, ctx: FlowContext, depth: int) -> None:
        for transition in ctx.take_transitions():
            if transition.op == "enter":
                await self._enter(ctx.event, transition.name, transition.params, depth + 1)
            elif transition.op == "leave":
                await self._leave(ctx.event, transition.clear_scratch, depth + 1)
            elif transition.op == "reenter":
                await self._reenter(ctx.event, depth + 1)

    async def _enter(self, event: InboundEvent, name: str, params: Dict[str, Any], depth: int) -> bool:
        chat_id = event.chat_id
        flow = self._flows.get(name)
        if flow is None:
            logger.error(f"Cannot enter unregistered flow {name!r} (chat {chat_id})")
            return False
        if depth > self.max_transition_depth:
            logger.error(f"Transition depth exceeded entering {name!r} (chat {chat_id})")
            return False

        available = {**self.sessions.get(chat_id), **params}
        missing = [key for key in flow.requires if available.get(key) is None]
        if missing:
            logger.warning(f"Refusing to enter {name!r} for chat {chat_id}: missing {missing}")
            return False

        previous = self.sessions.active_flow(chat_id)
        if previous and previous != name:
            logger.debug(f"Chat {chat_id} switching flow {previous!r} -> {name!r}")
        if params:
            self.sessions.set(chat_id, params)
        self.sessions.set_active_flow(chat_id, name, flow.idle_timeout_ms)

        if flow.enter_handler is not None:
            ctx = FlowContext(self, event, name, params=params, action="enter")
            if await self._run(ctx, flow.enter_handler):
                await self._apply(ctx, depth)
        return True

    async def _leave(self, event: InboundEvent, clear_scratch: bool, depth: int) -> bool:
        chat_id = event.chat_id
        name = self.sessions.active_flow(chat_id)
        if name is None:
            if clear_scratch:
                self.sessions.clear(chat_id)
            return False

        self.sessions.set_active_flow(chat_id, None)
        flow = self._flows.get(name)
        if flow is not None and flow.leave_handler is not None:
            ctx = FlowContext(self, event, name, action="leave")
            if await self._run(ctx, flow.leave_handler):
                await self._apply(ctx, depth)
        if clear_scratch:
            self.sessions.clear(chat_id)
        return True

    async def _reenter(self, event: InboundEvent, depth: int) -> bool:
        name = self.sessions.active_flow(event.chat_id)
        flow = self._flows.get(name) if name else None
        if flow is None or flow.enter_handler is None:
            return False
        if depth > self.max_transition_depth:
            logger.error(f"Transition depth exceeded re-entering {name!r}")
            return False
        ctx = FlowContext(self, event, name, action="enter")
        if await self._run(ctx, flow.enter_handler):
            await self._apply(ctx, depth)
        return True

    # Hooks and housekeeping

    async def _fire_hooks(self, ctx: FlowContext) -> None:
        if not self._hooks:
            return
        record = DispatchRecord(
            chat_id=ctx.chat_id,
            user_id=ctx.user_id,
            flow=ctx.flow,
            kind=ctx.event.kind,
            action=ctx.action,
            detail=ctx.audit_detail,
            args=ctx.args,
        )
        for hook in self._hooks:
            try:
                result = hook(record)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Dispatch hook {hook!r} failed for chat {ctx.chat_id}")

    @asynccontextmanager
    async def _chat_lock(self, chat_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        self._lock_users[chat_id] = self._lock_users.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[chat_id] -= 1
            if not self._lock_users[chat_id]:
                del self._lock_users[chat_id]

    def sweep(self) -> int:
        """Expire idle sessions and drop unused chat locks."""
        expired = self.sessions.sweep()
        # A released lock may still have a woken waiter that has not run yet
        for chat_id in list(self._locks):
            if chat_id not in self._lock_users:
                del self._locks[chat_id]
        return expired

    async def _safe_send(self, chat_id: int, text: str) -> None:
        try:
            await self.transport.send_text(chat_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to chat {chat_id}: {e}")

    async def _safe_answer(self, event: InboundEvent) -> None:
        try:
            await self.transport.answer_callback(event.callback_id)
        except Exception as e:
            logger.debug(f"Failed to answer callback for chat {event.chat_id}: {e}")

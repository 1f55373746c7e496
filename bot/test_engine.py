"""Tests for the conversation engine."""

import asyncio

import pytest

from bot.engine import FAILURE_TEXT, Flow, Stage
from bot.models import EventKind, InboundEvent
from bot.session_store import SessionStore


def text_event(text, chat_id=1):
    return InboundEvent(chat_id=chat_id, user_id=chat_id, kind=EventKind.TEXT, text=text)


def button_event(data, chat_id=1, callback_id="cb", message_id=10):
    return InboundEvent(
        chat_id=chat_id, user_id=chat_id, kind=EventKind.CALLBACK,
        callback_data=data, callback_id=callback_id, message_id=message_id,
    )


def photo_event(chat_id=1):
    return InboundEvent(chat_id=chat_id, user_id=chat_id, kind=EventKind.PHOTO, file_id="photo")


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def stage(transport):
    return Stage(transport)


class TestRouting:
    """Dispatch precedence and matching."""

    @pytest.mark.asyncio
    async def test_root_router_used_without_active_flow(self, stage):
        seen = []

        @stage.root.on_input(EventKind.TEXT, text="Hello")
        async def hello(ctx):
            seen.append(ctx.text)

        assert await stage.dispatch(text_event("  Hello "))
        assert seen == ["Hello"]

    @pytest.mark.asyncio
    async def test_specific_kind_beats_any(self, stage):
        seen = []
        flow = Flow("f")

        @flow.on_input(EventKind.ANY)
        async def anything(ctx):
            seen.append("any")

        @flow.on_input(EventKind.PHOTO)
        async def photo(ctx):
            seen.append("photo")

        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")

        await stage.dispatch(photo_event())
        await stage.dispatch(text_event("words"))
        assert seen == ["photo", "any"]

    @pytest.mark.asyncio
    async def test_first_registered_match_wins(self, stage):
        seen = []
        flow = Flow("f")
        flow.add_input(EventKind.TEXT, lambda ctx: _record(seen, "first"))
        flow.add_input(EventKind.TEXT, lambda ctx: _record(seen, "second"))
        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")

        await stage.dispatch(text_event("x"))
        assert seen == ["first"]

    @pytest.mark.asyncio
    async def test_button_regex_captures_args(self, stage):
        captured = []

        @stage.root.on_button(r"^grade_(\d+)_(a|b)?$")
        async def grade(ctx):
            captured.append(ctx.args)

        await stage.dispatch(button_event("grade_42_a"))
        await stage.dispatch(button_event("grade_7_"))
        await stage.dispatch(button_event("grade_7_ab"))
        assert captured == [("42", "a"), ("7", None)]

    @pytest.mark.asyncio
    async def test_unmatched_optional_group_keeps_positions(self, stage):
        captured = []

        @stage.root.on_button(r"^page_(?:(\w+)_)?(\d+)$")
        async def page(ctx):
            captured.append(ctx.args)

        await stage.dispatch(button_event("page_students_3"))
        await stage.dispatch(button_event("page_4"))
        assert captured == [("students", "3"), (None, "4")]

    @pytest.mark.asyncio
    async def test_exact_button_does_not_prefix_match(self, stage):
        seen = []

        @stage.root.on_button("cancel")
        async def cancel(ctx):
            seen.append(ctx.event.callback_data)

        await stage.dispatch(button_event("cancel_all"))
        await stage.dispatch(button_event("cancel"))
        assert seen == ["cancel"]

    @pytest.mark.asyncio
    async def test_unmatched_event_dropped(self, stage, transport):
        assert await stage.dispatch(text_event("nothing listens")) is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_unhandled_text_sent_inside_flow(self, transport):
        stage = Stage(transport, unhandled_text="Use the buttons")
        stage.register(Flow("f"))
        await stage.enter_flow(text_event(""), "f")

        await stage.dispatch(text_event("?"))
        assert transport.last_text(1) == "Use the buttons"

    def test_callback_inputs_rejected(self):
        flow = Flow("f")
        with pytest.raises(ValueError):
            flow.add_input(EventKind.CALLBACK, _noop)

    def test_duplicate_flow_rejected(self, stage):
        stage.register(Flow("f"))
        with pytest.raises(ValueError):
            stage.register(Flow("f"))

    @pytest.mark.asyncio
    async def test_callback_answered_automatically(self, stage, transport):
        @stage.root.on_button("ping")
        async def ping(ctx):
            pass

        await stage.dispatch(button_event("ping", callback_id="c1"))
        await stage.dispatch(button_event("unknown", callback_id="c2"))
        assert [a["callback_id"] for a in transport.answers] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_explicit_answer_not_repeated(self, stage, transport):
        @stage.root.on_button("ping")
        async def ping(ctx):
            await ctx.answer("pong")
            await ctx.answer("again")

        await stage.dispatch(button_event("ping"))
        assert transport.answers == [{"callback_id": "cb", "text": "pong"}]

    @pytest.mark.asyncio
    async def test_edit_targets_pressed_message(self, stage, transport):
        @stage.root.on_button("edit")
        async def edit(ctx):
            await ctx.edit("edited")

        await stage.dispatch(button_event("edit", message_id=77))
        assert transport.edits[0]["message_id"] == 77
        assert transport.sent == []


class TestTransitions:
    """Entering, switching and leaving flows."""

    @pytest.mark.asyncio
    async def test_enter_runs_hook_with_params(self, stage):
        entered = []
        flow = Flow("f")

        @flow.on_enter
        async def on_enter(ctx):
            entered.append((ctx.params, ctx.get("student_id")))

        stage.register(flow)
        assert await stage.enter_flow(text_event(""), "f", student_id="123")
        assert stage.active_flow(1) == "f"
        assert entered == [({"student_id": "123"}, "123")]

    @pytest.mark.asyncio
    async def test_enter_unknown_flow_is_noop(self, stage):
        assert await stage.enter_flow(text_event(""), "missing") is False
        assert stage.active_flow(1) is None

    @pytest.mark.asyncio
    async def test_enter_refused_without_required_keys(self, stage):
        entered = []
        flow = Flow("needs", requires=("student_id",))
        flow.on_enter(lambda ctx: _record(entered, "entered"))
        stage.register(flow)

        assert await stage.enter_flow(text_event(""), "needs") is False
        assert stage.active_flow(1) is None
        assert entered == []

        assert await stage.enter_flow(text_event(""), "needs", student_id="1")
        assert entered == ["entered"]

    @pytest.mark.asyncio
    async def test_required_keys_may_come_from_scratch(self, stage):
        stage.register(Flow("needs", requires=("score",)))
        stage.sessions.set(1, {"score": 80})
        assert await stage.enter_flow(text_event(""), "needs")

    @pytest.mark.asyncio
    async def test_switch_keeps_scratch_and_skips_leave(self, stage):
        left = []
        first, second = Flow("first"), Flow("second")
        first.on_leave(lambda ctx: _record(left, "first"))

        @first.on_input(EventKind.TEXT)
        async def step(ctx):
            ctx.update(name=ctx.text)
            ctx.enter("second", step=2)

        stage.register(first, second)
        await stage.enter_flow(text_event(""), "first")
        await stage.dispatch(text_event("Ali"))

        assert stage.active_flow(1) == "second"
        assert stage.sessions.get(1) == {"name": "Ali", "step": 2}
        assert left == []

    @pytest.mark.asyncio
    async def test_leave_runs_hook_and_keeps_scratch(self, stage):
        left = []
        flow = Flow("f")
        flow.on_leave(lambda ctx: _record(left, ctx.action))

        @flow.on_input(EventKind.TEXT)
        async def done(ctx):
            ctx.update(kept=True)
            ctx.leave()

        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")
        await stage.dispatch(text_event("x"))

        assert stage.active_flow(1) is None
        assert left == ["leave"]
        assert stage.sessions.get(1) == {"kept": True}

    @pytest.mark.asyncio
    async def test_finish_clears_scratch(self, stage):
        flow = Flow("f")

        @flow.on_input(EventKind.TEXT)
        async def done(ctx):
            ctx.update(temp=1)
            ctx.finish()

        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")
        await stage.dispatch(text_event("x"))

        assert stage.active_flow(1) is None
        assert stage.sessions.get(1) == {}

    @pytest.mark.asyncio
    async def test_reenter_runs_enter_hook_again(self, stage):
        entered = []
        flow = Flow("f")
        flow.on_enter(lambda ctx: _record(entered, "enter"))

        @flow.on_input(EventKind.TEXT)
        async def again(ctx):
            ctx.reenter()

        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")
        await stage.dispatch(text_event("x"))
        assert entered == ["enter", "enter"]
        assert stage.active_flow(1) == "f"

    @pytest.mark.asyncio
    async def test_transition_loop_is_bounded(self, stage):
        entered = []
        flow = Flow("loop")

        @flow.on_enter
        async def on_enter(ctx):
            entered.append(1)
            ctx.reenter()

        stage.register(flow)
        await stage.enter_flow(text_event(""), "loop")
        assert 1 < len(entered) <= stage.max_transition_depth + 2

    @pytest.mark.asyncio
    async def test_leave_without_active_flow(self, stage):
        assert await stage.leave_flow(text_event("")) is False


class TestFailures:
    """Handler exceptions."""

    @pytest.mark.asyncio
    async def test_exception_sends_failure_and_keeps_flow(self, stage, transport):
        flow = Flow("f")

        @flow.on_input(EventKind.TEXT)
        async def broken(ctx):
            ctx.enter("other")
            raise RuntimeError("boom")

        stage.register(flow, Flow("other"))
        await stage.enter_flow(text_event(""), "f")

        assert await stage.dispatch(text_event("x")) is False
        assert transport.last_text(1) == FAILURE_TEXT
        assert stage.active_flow(1) == "f"

    @pytest.mark.asyncio
    async def test_leave_requested_before_failure_is_honoured(self, stage):
        flow = Flow("f")

        @flow.on_input(EventKind.TEXT)
        async def broken(ctx):
            ctx.update(partial=True)
            ctx.finish()
            raise RuntimeError("boom")

        stage.register(flow)
        await stage.enter_flow(text_event(""), "f")
        await stage.dispatch(text_event("x"))

        assert stage.active_flow(1) is None
        assert stage.sessions.get(1) == {}

    @pytest.mark.asyncio
    async def test_failing_enter_hook_still_enters(self, stage, transport):
        flow = Flow("f")

        @flow.on_enter
        async def on_enter(ctx):
            raise RuntimeError("boom")

        stage.register(flow)
        assert await stage.enter_flow(text_event(""), "f")
        assert stage.active_flow(1) == "f"
        assert transport.last_text(1) == FAILURE_TEXT

    @pytest.mark.asyncio
    async def test_stale_active_flow_is_reset(self, stage):
        seen = []
        stage.root.add_input(EventKind.TEXT, lambda ctx: _record(seen, "root"))
        stage.sessions.set_active_flow(1, "gone")

        await stage.dispatch(text_event("x"))
        assert seen == ["root"]
        assert stage.active_flow(1) is None


class TestSerialization:
    """Per-chat ordering."""

    @pytest.mark.asyncio
    async def test_same_chat_events_run_one_at_a_time(self, stage):
        order = []

        @stage.root.on_input(EventKind.TEXT)
        async def slow(ctx):
            order.append(f"{ctx.text}-start")
            await asyncio.sleep(0.01)
            order.append(f"{ctx.text}-end")

        await asyncio.gather(stage.dispatch(text_event("a")), stage.dispatch(text_event("b")))
        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_chats_interleave(self, stage):
        order = []
        release = asyncio.Event()

        @stage.root.on_input(EventKind.TEXT)
        async def waiter(ctx):
            order.append(ctx.chat_id)
            if ctx.chat_id == 1:
                await release.wait()
            else:
                release.set()

        await asyncio.wait_for(
            asyncio.gather(stage.dispatch(text_event("a", chat_id=1)), stage.dispatch(text_event("b", chat_id=2))),
            timeout=1,
        )
        assert order == [1, 2]

    @pytest.mark.asyncio
    async def test_sweep_keeps_lock_with_woken_waiter(self, stage):
        order = []

        @stage.root.on_input(EventKind.TEXT)
        async def slow(ctx):
            order.append(f"{ctx.text}-start")
            await asyncio.sleep(0.01)
            order.append(f"{ctx.text}-end")

        async with stage._chat_lock(1):
            waiting = asyncio.create_task(stage.dispatch(text_event("b")))
            await asyncio.sleep(0)
        # released: "b" is woken but has not run yet
        stage.sweep()
        late = asyncio.create_task(stage.dispatch(text_event("c")))
        await asyncio.wait_for(asyncio.gather(waiting, late), timeout=1)

        assert order == ["b-start", "b-end", "c-start", "c-end"]
        stage.sweep()
        assert stage._locks == {}


class TestHooksAndCommands:
    """Dispatch hooks and commands."""

    @pytest.mark.asyncio
    async def test_hook_receives_record(self, stage):
        records = []
        stage.add_dispatch_hook(records.append)

        @stage.root.on_button(r"^approve_(\d+)$", action="approve")
        async def approve(ctx):
            ctx.audit_detail = "approved"

        await stage.dispatch(button_event("approve_5", chat_id=3))
        record = records[0]
        assert (record.chat_id, record.flow, record.kind, record.action, record.detail, record.args) == (
            3, None, EventKind.CALLBACK, "approve", "approved", ("5",),
        )

    @pytest.mark.asyncio
    async def test_hook_not_fired_for_failures_or_drops(self, stage):
        records = []
        stage.add_dispatch_hook(records.append)

        @stage.root.on_input(EventKind.TEXT)
        async def broken(ctx):
            raise RuntimeError("boom")

        await stage.dispatch(text_event("x"))
        await stage.dispatch(photo_event())
        assert records == []

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_stop_others(self, stage):
        records = []

        def bad(record):
            raise RuntimeError("hook")

        async def good(record):
            records.append(record.action)

        stage.add_dispatch_hook(bad)
        stage.add_dispatch_hook(good)
        stage.root.add_input(EventKind.TEXT, _noop, action="noop")

        assert await stage.dispatch(text_event("x"))
        assert records == ["noop"]

    @pytest.mark.asyncio
    async def test_command_runs_inside_flow(self, stage):
        flow = Flow("f")
        flow.add_input(EventKind.ANY, _noop)
        stage.register(flow)

        @stage.command("cancel")
        async def cancel(ctx):
            ctx.finish()

        await stage.enter_flow(text_event(""), "f")
        assert await stage.run_command("cancel", text_event("/cancel"))
        assert stage.active_flow(1) is None
        assert stage.command_names == ["cancel"]

    @pytest.mark.asyncio
    async def test_unknown_command(self, stage):
        assert await stage.run_command("nope", text_event("/nope")) is False


class TestIdleTimeout:
    """Session expiry through the stage."""

    @pytest.mark.asyncio
    async def test_idle_chat_returns_to_root(self, transport):
        clock = FakeClock()
        stage = Stage(transport, sessions=SessionStore(idle_timeout_ms=1000, clock=clock))
        seen = []
        flow = Flow("f")
        flow.add_input(EventKind.TEXT, lambda ctx: _record(seen, "flow"))
        stage.root.add_input(EventKind.TEXT, lambda ctx: _record(seen, "root"))
        stage.register(flow)

        await stage.enter_flow(text_event(""), "f")
        stage.sessions.set(1, {"draft": "x"})
        clock.now = 0.5
        await stage.dispatch(text_event("a"))
        clock.now = 2.0
        await stage.dispatch(text_event("b"))

        assert seen == ["flow", "root"]
        assert stage.sessions.get(1) == {}

    @pytest.mark.asyncio
    async def test_flow_specific_timeout(self, transport):
        clock = FakeClock()
        stage = Stage(transport, sessions=SessionStore(idle_timeout_ms=1000, clock=clock))
        stage.register(Flow("long", idle_timeout_ms=10_000))

        await stage.enter_flow(text_event(""), "long")
        clock.now = 5.0
        assert stage.active_flow(1) == "long"

    @pytest.mark.asyncio
    async def test_sweep_expires_and_drops_locks(self, transport):
        clock = FakeClock()
        stage = Stage(transport, sessions=SessionStore(idle_timeout_ms=1000, clock=clock))
        stage.register(Flow("f"))
        await stage.enter_flow(text_event(""), "f")

        clock.now = 5.0
        assert stage.sweep() == 1
        assert stage.active_flow(1) is None
        assert len(stage.sessions) == 0


async def _noop(ctx):
    pass


async def _record(bucket, value):
    bucket.append(value)

"""Unit tests for the carousel state machine."""
import asyncio

import discord
import pytest

from conftest import FakeSurface
from requestarr.carousel import (
    EXPIRED_TEXT,
    GRAB,
    NEXT,
    NOT_AUTHORIZED_TEXT,
    PREV,
    Carousel,
    CarouselState,
    ControlEvent,
)
from requestarr.embeds import Outcome, OutcomeKind

OWNER = 1001
STRANGER = 2002


def render(item, index, total):
    return discord.Embed(title=str(item), description=f"{index + 1}/{total}")


def make(items, on_grab=None, timeout=5.0):
    return Carousel(items, render, owner_id=OWNER, on_grab=on_grab, timeout=timeout)


def press(carousel, action, user_id=OWNER):
    return ControlEvent(carousel.control_id(action), user_id)


class GrabRecorder:
    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.items = []
        self.delay = delay
        self.fail = fail

    async def __call__(self, item):
        self.items.append(item)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("backend exploded")
        return Outcome(OutcomeKind.ADDED, "Added", f"Added {item}")


class SlowSurface(FakeSurface):
    """Every render after the first takes `delay` seconds; records the state right after it returns."""

    def __init__(self, carousel, delay: float):
        super().__init__()
        self.carousel = carousel
        self.delay = delay
        self.states_after_render = []

    async def render(self, page, event=None):
        if self.pages:
            await asyncio.sleep(self.delay)
            loop = asyncio.get_running_loop()
            loop.call_soon(lambda: self.states_after_render.append(self.carousel.state))
        self.pages.append(page)


class TestInitialRender:
    """Tests for the first page and its controls."""

    def test_fresh_carousel_starts_at_zero(self):
        """Test cursor 0 with prev disabled and next enabled for N > 1."""
        async def scenario():
            c = make(["a", "b", "c"], on_grab=GrabRecorder())
            surface = FakeSurface()
            await c.start(surface)
            await c.stop()
            return c, surface

        c, surface = asyncio.run(scenario())
        controls = surface.controls(0)
        assert c.cursor == 0
        assert controls[PREV].disabled
        assert not controls[NEXT].disabled
        assert not controls[GRAB].disabled

    def test_grab_control_only_with_callback(self):
        """Test list carousels render no grab control."""
        c = make(["a", "b"])
        assert [ctl.action for ctl in c.controls()] == [PREV, NEXT]

    def test_control_ids_are_session_scoped(self):
        """Test two sessions never share control IDs."""
        a, b = make(["x", "y"]), make(["x", "y"])
        assert {c.custom_id for c in a.controls()}.isdisjoint({c.custom_id for c in b.controls()})
        assert all(c.custom_id.startswith(f"{a.id}:") for c in a.controls())

    def test_empty_items_rejected(self):
        """Test a carousel cannot be built over nothing."""
        with pytest.raises(ValueError):
            make([])


class TestNavigation:
    """Tests for prev/next clamping."""

    def test_next_clamps_at_last_item(self):
        """Test repeated next never moves past N-1."""
        async def scenario():
            c = make(["a", "b", "c"])
            surface = FakeSurface()
            await c.start(surface)
            for _ in range(6):
                await c.dispatch(press(c, NEXT))
            runner = asyncio.ensure_future(c.run())
            while not c._queue.empty():
                await asyncio.sleep(0)
            await asyncio.sleep(0.01)
            cursor = c.cursor
            await c.stop()
            await runner
            return cursor, surface

        cursor, surface = asyncio.run(scenario())
        assert cursor == 2
        last = surface.controls(-1)
        assert last[NEXT].disabled
        assert not last[PREV].disabled

    def test_prev_clamps_at_zero(self):
        """Test repeated prev never moves below 0."""
        async def scenario():
            c = make(["a", "b", "c"])
            await c.start(FakeSurface())
            await c.dispatch(press(c, NEXT))
            for _ in range(5):
                await c.dispatch(press(c, PREV))
            runner = asyncio.ensure_future(c.run())
            while not c._queue.empty():
                await asyncio.sleep(0)
            await asyncio.sleep(0.01)
            cursor = c.cursor
            await c.stop()
            await runner
            return cursor

        assert asyncio.run(scenario()) == 0


class TestGrab:
    """Tests for the terminal grab action."""

    def test_double_grab_mutates_once(self):
        """Test two grabs in immediate succession produce exactly one grab call."""
        grab = GrabRecorder()

        async def scenario():
            c = make(["a", "b"], on_grab=grab)
            surface = FakeSurface()
            await c.start(surface)
            assert await c.dispatch(press(c, GRAB))
            assert await c.dispatch(press(c, GRAB))
            outcome = await c.run()
            return c, surface, outcome

        c, surface, outcome = asyncio.run(scenario())
        assert grab.items == ["a"]
        assert outcome.kind is OutcomeKind.ADDED
        assert c.state is CarouselState.TERMINATED
        assert [text for _, text in surface.notices] == [EXPIRED_TEXT]
        # Final page is the outcome, without controls
        assert surface.pages[-1].controls == []

    def test_grab_uses_item_at_cursor(self):
        """Test grab acts on the item currently shown."""
        grab = GrabRecorder()

        async def scenario():
            c = make(["a", "b", "c"], on_grab=grab)
            await c.start(FakeSurface())
            await c.dispatch(press(c, NEXT))
            await c.dispatch(press(c, GRAB))
            await c.run()

        asyncio.run(scenario())
        assert grab.items == ["b"]

    def test_grab_exception_renders_error_outcome(self):
        """Test a failing grab still terminates with an error outcome."""
        async def scenario():
            c = make(["a", "b"], on_grab=GrabRecorder(fail=True))
            surface = FakeSurface()
            await c.start(surface)
            await c.dispatch(press(c, GRAB))
            return c, await c.run()

        c, outcome = asyncio.run(scenario())
        assert c.terminated
        assert outcome.kind is OutcomeKind.TRANSIENT_FAILURE

    def test_timer_fires_during_grab(self):
        """Test an in-flight grab completes and is rendered after the deadline passes."""
        grab = GrabRecorder(delay=0.1)

        async def scenario():
            c = make(["a", "b"], on_grab=grab, timeout=0.02)
            surface = FakeSurface()
            await c.start(surface)
            await c.dispatch(press(c, GRAB))
            outcome = await c.run()
            return surface, outcome

        surface, outcome = asyncio.run(scenario())
        assert grab.items == ["a"]
        assert outcome.kind is OutcomeKind.ADDED
        assert surface.strip_count == 1
        assert surface.pages[-1].controls == []


class TestOwnership:
    """Tests for owner-only controls."""

    def test_non_owner_cannot_move_or_grab(self):
        """Test foreign users get a private notice and change nothing."""
        grab = GrabRecorder()

        async def scenario():
            c = make(["a", "b"], on_grab=grab)
            surface = FakeSurface()
            await c.start(surface)
            accepted = [
                await c.dispatch(press(c, NEXT, STRANGER)),
                await c.dispatch(press(c, GRAB, STRANGER)),
            ]
            state = c.state
            await c.stop()
            return c, surface, accepted, state

        c, surface, accepted, state = asyncio.run(scenario())
        assert accepted == [False, False]
        assert c.cursor == 0
        assert state is CarouselState.RENDERED
        assert grab.items == []
        assert [text for _, text in surface.notices] == [NOT_AUTHORIZED_TEXT, NOT_AUTHORIZED_TEXT]

    def test_foreign_control_ids_ignored(self):
        """Test events for another session are not consumed."""
        async def scenario():
            a, b = make(["x", "y"]), make(["x", "y"])
            await a.start(FakeSurface())
            accepted = await a.dispatch(press(b, NEXT))
            await a.stop()
            return accepted

        assert asyncio.run(scenario()) is False


class TestTimeout:
    """Tests for the session deadline."""

    def test_expiry_terminates_and_strips_controls(self):
        """Test the session ends on its own and later events are no-ops."""
        grab = GrabRecorder()

        async def scenario():
            c = make(["a", "b"], on_grab=grab, timeout=0.02)
            surface = FakeSurface()
            await c.start(surface)
            outcome = await c.run()
            late = [await c.dispatch(press(c, action)) for action in (NEXT, PREV, GRAB)]
            return c, surface, outcome, late

        c, surface, outcome, late = asyncio.run(scenario())
        assert outcome is None
        assert c.state is CarouselState.TERMINATED
        assert surface.strip_count == 1
        assert late == [False, False, False]
        assert c.cursor == 0
        assert grab.items == []

    def test_expiry_during_slow_render_stays_terminated(self):
        """Test a deadline that passes mid-render is not undone when the render returns."""
        grab = GrabRecorder()

        async def scenario():
            c = make(["a", "b"], on_grab=grab, timeout=0.02)
            surface = SlowSurface(c, delay=0.1)
            await c.start(surface)
            await c.dispatch(press(c, NEXT))
            await c.run()
            late = await c.dispatch(press(c, GRAB))
            return c, surface, late

        c, surface, late = asyncio.run(scenario())
        assert surface.states_after_render == [CarouselState.TERMINATED]
        assert c.state is CarouselState.TERMINATED
        assert surface.strip_count == 1
        assert late is False
        assert grab.items == []

    def test_surface_failures_are_swallowed(self):
        """Test a deleted message does not break navigation."""
        async def scenario():
            c = make(["a", "b"])
            await c.start(FakeSurface(fail_after_first=True))
            await c.dispatch(press(c, NEXT))
            runner = asyncio.ensure_future(c.run())
            while not c._queue.empty():
                await asyncio.sleep(0)
            await asyncio.sleep(0.01)
            await c.stop()
            await runner
            return c

        c = asyncio.run(scenario())
        assert c.cursor == 1
        assert c.terminated

"""
Paginated result browser.

A Carousel shows one item at a time with prev/next (and optionally grab) controls. Control
events from the owning user are consumed one at a time from a queue; a separate timer task
ends the session at its deadline. Grab performs at most one mutation and always ends the
session. The rendering surface is injected, so the state machine never talks to Discord directly.
"""
import asyncio
import enum
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

import discord

from .embeds import Outcome, OutcomeKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

PREV = "prev"
NEXT = "next"
GRAB = "grab"

SEARCH_TIMEOUT = 60.0
DIGEST_TIMEOUT = 300.0

NOT_AUTHORIZED_TEXT = "You are not authorized to interact with this."
EXPIRED_TEXT = "This session has ended."

DEFAULT_LABELS = {PREV: "Previous", NEXT: "Next", GRAB: "Grab"}


class CarouselState(enum.Enum):
    IDLE = "idle"
    RENDERED = "rendered"
    AWAITING = "awaiting"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Control:
    action: str
    custom_id: str
    label: str
    disabled: bool = False
    style: str = "primary"


@dataclass
class Page:
    content: discord.Embed
    controls: List[Control] = field(default_factory=list)


@dataclass(frozen=True)
class ControlEvent:
    control_id: str
    user_id: int
    # Transport object used to acknowledge the event (a discord.Interaction in production)
    handle: Any = None


class RenderSurface:
    """Where a carousel draws itself. Implementations: paginator.InteractionSurface, test fakes."""

    async def render(self, page: Page, event: Optional[ControlEvent] = None) -> None:
        raise NotImplementedError

    async def defer(self, event: ControlEvent) -> None:
        raise NotImplementedError

    async def notify(self, event: ControlEvent, text: str) -> None:
        raise NotImplementedError

    async def strip_controls(self) -> None:
        raise NotImplementedError


class Carousel(Generic[T]):
    def __init__(
        self,
        items: Sequence[T],
        render_item: Callable[[T, int, int], discord.Embed],
        owner_id: int,
        on_grab: Optional[Callable[[T], Awaitable[Outcome]]] = None,
        timeout: float = SEARCH_TIMEOUT,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if not items:
            raise ValueError("A carousel needs at least one item")
        self.id = secrets.token_hex(6)
        self.items = list(items)
        self.render_item = render_item
        self.owner_id = owner_id
        self.on_grab = on_grab
        self.timeout = timeout
        self.labels = dict(DEFAULT_LABELS, **(labels or {}))
        self.cursor = 0
        self.state = CarouselState.IDLE
        self.outcome: Optional[Outcome] = None
        self._queue: "asyncio.Queue" = asyncio.Queue()
        self._surface: Optional[RenderSurface] = None
        self._timer: Optional["asyncio.Future"] = None

    def __len__(self) -> int:
        return len(self.items)

    @property
    def current(self) -> T:
        return self.items[self.cursor]

    @property
    def terminated(self) -> bool:
        return self.state is CarouselState.TERMINATED

    def control_id(self, action: str) -> str:
        return f"{self.id}:{action}"

    def _action_for(self, control_id: str) -> Optional[str]:
        prefix, _, action = control_id.partition(":")
        if prefix != self.id or action not in (PREV, NEXT, GRAB):
            return None
        if action == GRAB and self.on_grab is None:
            return None
        return action

    def controls(self) -> List[Control]:
        out: List[Control] = []
        if self.on_grab is not None:
            out.append(Control(GRAB, self.control_id(GRAB), self.labels[GRAB], style="success"))
        out.append(Control(PREV, self.control_id(PREV), self.labels[PREV], disabled=self.cursor <= 0))
        out.append(Control(NEXT, self.control_id(NEXT), self.labels[NEXT], disabled=self.cursor >= len(self.items) - 1))
        return out

    def page(self) -> Page:
        embed = self.render_item(self.current, self.cursor, len(self.items))
        return Page(embed, self.controls())

    async def start(self, surface: RenderSurface) -> None:
        """Draw the first page and arm the deadline timer. Errors here propagate to the caller."""
        if self.state is not CarouselState.IDLE:
            raise RuntimeError(f"Carousel {self.id} already started")
        self._surface = surface
        await surface.render(self.page())
        self.state = CarouselState.RENDERED
        self._timer = asyncio.ensure_future(self._expire_after(self.timeout))

    async def run(self) -> Optional[Outcome]:
        """Consume control events until grab, stop or the deadline. Returns the grab outcome, if any."""
        if self._timer is None:
            raise RuntimeError("Carousel.start() must be awaited before run()")
        try:
            while not self.terminated:
                self.state = CarouselState.AWAITING
                getter = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({getter, self._timer}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    break
                action, event = getter.result()
                if self.terminated:
                    await self._best_effort(self._surface.notify(event, EXPIRED_TEXT))
                    break
                await self._handle(action, event)
        finally:
            await self.terminate()
        return self.outcome

    async def dispatch(self, event: ControlEvent) -> bool:
        """Feed one control event in. Returns True if it was queued for processing."""
        action = self._action_for(event.control_id)
        if action is None:
            return False
        if self.terminated:
            await self._best_effort(self._surface.notify(event, EXPIRED_TEXT))
            return False
        if event.user_id != self.owner_id:
            logger.info("Carousel %s: user %s is not the owner", self.id, event.user_id)
            await self._best_effort(self._surface.notify(event, NOT_AUTHORIZED_TEXT))
            return False
        self._queue.put_nowait((action, event))
        return True

    async def stop(self) -> None:
        await self.terminate()

    async def _handle(self, action: str, event: ControlEvent) -> None:
        if action == GRAB:
            await self._grab(event)
            return
        if action == PREV:
            self.cursor = max(0, self.cursor - 1)
        elif action == NEXT:
            self.cursor = min(len(self.items) - 1, self.cursor + 1)
        await self._best_effort(self._surface.render(self.page(), event))
        # The deadline may have passed while the render was in flight
        if not self.terminated:
            self.state = CarouselState.RENDERED

    async def _grab(self, event: ControlEvent) -> None:
        item = self.current
        await self._best_effort(self._surface.defer(event))
        try:
            outcome = await self.on_grab(item)
        except Exception:
            logger.exception("Carousel %s: grab failed", self.id)
            outcome = Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "Something went wrong. Please try again later.")
        self.outcome = outcome
        await self.terminate(final=Page(outcome.to_embed()), event=event)

    async def terminate(self, final: Optional[Page] = None, event: Optional[ControlEvent] = None) -> None:
        """Absorbing: the first call cancels the timer, strips controls and drops queued events."""
        first = not self.terminated
        self.state = CarouselState.TERMINATED
        if first and self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        if self._surface is None:
            return
        if final is not None:
            await self._best_effort(self._surface.render(final, event))
        elif first:
            await self._best_effort(self._surface.strip_controls())
        if first:
            while not self._queue.empty():
                _, stale = self._queue.get_nowait()
                await self._best_effort(self._surface.notify(stale, EXPIRED_TEXT))

    async def _expire_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if not self.terminated:
            logger.debug("Carousel %s timed out after %.0fs", self.id, seconds)
            await self.terminate()

    async def _best_effort(self, coro: Awaitable[Any]) -> None:
        # Surface edits can fail (message deleted, token expired); the session moves on regardless
        try:
            await coro
        except Exception:
            logger.debug("Carousel %s: surface update failed", self.id, exc_info=True)

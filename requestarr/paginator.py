import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import discord

from .carousel import Carousel, Control, ControlEvent, Page, RenderSurface
from .embeds import create_embed_template

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 4096

_STYLES = {
    "primary": discord.ButtonStyle.primary,
    "secondary": discord.ButtonStyle.secondary,
    "success": discord.ButtonStyle.success,
    "danger": discord.ButtonStyle.danger,
}


def chunk(items: Sequence[Any], size: int) -> List[List[Any]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def truncate(text: str, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def text_pages(lines: Sequence[str], per_page: int) -> List[str]:
    """Group lines into page bodies, blank line between entries."""
    return [truncate("\n\n".join(group)) for group in chunk(lines, per_page)]


def page_renderer(title: str, user: Optional[discord.abc.User] = None, color: Optional[discord.Color] = None):
    """render_item for carousels whose items are already-formatted page bodies."""

    def render(body: str, index: int, total: int) -> discord.Embed:
        embed = create_embed_template(title, body, user, color=color)
        if user is None:
            embed.set_footer(text=f"Page {index + 1}/{total}")
        else:
            embed.set_footer(text=f"Page {index + 1}/{total} • Requested by {user}", icon_url=user.display_avatar.url)
        return embed

    return render


def _make_button(control: Control, callback) -> discord.ui.Button:
    btn = discord.ui.Button(
        label=control.label,
        style=_STYLES.get(control.style, discord.ButtonStyle.primary),
        custom_id=control.custom_id,
        disabled=control.disabled,
    )
    btn.callback = callback  # type: ignore
    return btn


class ControlView(discord.ui.View):
    """Buttons for one carousel page. Presses are forwarded as ControlEvents; the carousel owns the deadline."""

    def __init__(self, controls: List[Control], dispatch: Callable[[ControlEvent], Awaitable[bool]]):
        super().__init__(timeout=None)
        self.dispatch = dispatch
        for control in controls:
            self.add_item(_make_button(control, self._forward(control)))

    def _forward(self, control: Control):
        async def on_press(inter: discord.Interaction):
            await self.dispatch(ControlEvent(control.custom_id, inter.user.id, inter))

        return on_press


class InteractionSurface(RenderSurface):
    """
    Draws a carousel into Discord: either as the reply to a slash command interaction, or as
    a new message in a channel / DM (digests). Later pages are drawn by answering the button
    interaction that caused them.
    """

    def __init__(
        self,
        dispatch: Callable[[ControlEvent], Awaitable[bool]],
        interaction: Optional[discord.Interaction] = None,
        channel: Optional[discord.abc.Messageable] = None,
        ephemeral: bool = False,
    ):
        if interaction is None and channel is None:
            raise ValueError("InteractionSurface needs an interaction or a channel")
        self.dispatch = dispatch
        self.interaction = interaction
        self.channel = channel
        self.ephemeral = ephemeral
        self.message: Optional[Any] = None
        self._view: Optional[ControlView] = None

    def _swap_view(self, controls: List[Control]) -> Optional[ControlView]:
        if self._view is not None:
            self._view.stop()
        self._view = ControlView(controls, self.dispatch) if controls else None
        return self._view

    async def render(self, page: Page, event: Optional[ControlEvent] = None) -> None:
        view = self._swap_view(page.controls)
        # discord.py rejects view=None on a fresh send, so only pass it when there is one
        kwargs = {"embed": page.content}
        if view is not None:
            kwargs["view"] = view

        inter = event.handle if event is not None else None
        if isinstance(inter, discord.Interaction):
            if not inter.response.is_done():
                await inter.response.edit_message(embed=page.content, view=view)
            else:
                await inter.edit_original_response(embed=page.content, view=view)
            return

        if self.message is not None:
            await self.message.edit(embed=page.content, view=view)
            return

        if self.interaction is not None:
            if self.interaction.response.is_done():
                self.message = await self.interaction.followup.send(ephemeral=self.ephemeral, wait=True, **kwargs)
            else:
                await self.interaction.response.send_message(ephemeral=self.ephemeral, **kwargs)
                self.message = await self.interaction.original_response()
        else:
            self.message = await self.channel.send(**kwargs)

    async def defer(self, event: ControlEvent) -> None:
        inter = event.handle
        if isinstance(inter, discord.Interaction) and not inter.response.is_done():
            await inter.response.defer()

    async def notify(self, event: ControlEvent, text: str) -> None:
        inter = event.handle
        if not isinstance(inter, discord.Interaction):
            return
        if inter.response.is_done():
            await inter.followup.send(text, ephemeral=True)
        else:
            await inter.response.send_message(text, ephemeral=True)

    async def strip_controls(self) -> None:
        if self._view is not None:
            self._view.stop()
            self._view = None
        if self.message is None:
            return
        try:
            await self.message.edit(view=None)
        except discord.HTTPException as e:
            logger.debug("Could not strip controls: %s", e)


async def present(carousel: Carousel, interaction: discord.Interaction, ephemeral: bool = False):
    """Show a carousel as the reply to a slash command and block until it ends."""
    surface = InteractionSurface(carousel.dispatch, interaction=interaction, ephemeral=ephemeral)
    await carousel.start(surface)
    return await carousel.run()


async def present_in(carousel: Carousel, channel: discord.abc.Messageable):
    """Same as present(), posting a fresh message to a channel or DM."""
    surface = InteractionSurface(carousel.dispatch, channel=channel)
    await carousel.start(surface)
    return await carousel.run()

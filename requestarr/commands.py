"""
Command registry and the gates every slash command passes through before its handler runs:
runtime enable/disable, owner-only, the PUBLIC_ARR switch for *arr commands, and per-user cooldowns.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

import discord
from discord import app_commands

from .anime import JikanClient
from .api import RateLimiter, SecureApiClient
from .config import Config
from .embeds import Outcome, OutcomeKind, outcome_for_error
from .errors import AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[None]]
Invoke = Callable[..., Awaitable[None]]
AppCommand = Union[app_commands.Command, app_commands.Group]

# Never disableable, or the owner could lock themselves out
PROTECTED_COMMANDS = {"module"}


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Handler
    # Builds the discord.py app command; its callbacks forward to `invoke(interaction, **options)`
    slash: Callable[[Invoke], AppCommand]
    owner_only: bool = False
    arr: bool = False
    cooldown: float = 0.0
    example: str = ""


class AppContext:
    """Everything a handler needs: config, one API client per configured backend, the Jikan client."""

    def __init__(
        self,
        cfg: Config,
        registry: "CommandRegistry",
        clients: Optional[Dict[str, SecureApiClient]] = None,
        jikan: Optional[JikanClient] = None,
        bot: Optional[discord.Client] = None,
    ):
        self.cfg = cfg
        self.registry = registry
        self.clients = clients if clients is not None else {}
        self.jikan = jikan or JikanClient()
        self.bot = bot

    @classmethod
    def from_config(cls, cfg: Config, registry: "CommandRegistry", bot: Optional[discord.Client] = None) -> "AppContext":
        limiter = RateLimiter()
        clients = {name: SecureApiClient(bc, limiter=limiter) for name, bc in cfg.backends.items()}
        return cls(cfg, registry, clients=clients, bot=bot)

    def client_for(self, name: str) -> SecureApiClient:
        client = self.clients.get(name)
        if client is None:
            reason = self.cfg.backend_errors.get(name, f"{name.upper()}_URL / {name.upper()}_TOKEN not set")
            raise ConfigurationError(f"{name} is not configured: {reason}", backend=name)
        return client

    async def close(self):
        for client in self.clients.values():
            await client.close()
        await self.jikan.close()


class CommandRegistry:
    def __init__(self, specs: List[CommandSpec], clock: Callable[[], float] = time.monotonic):
        self._specs: Dict[str, CommandSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate command {spec.name!r}")
            self._specs[spec.name] = spec
        self.disabled: Set[str] = set()
        self._clock = clock
        self._last_used: Dict[Tuple[str, int], float] = {}

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self._specs.values())

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def get(self, name: str) -> Optional[CommandSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        return list(self._specs.keys())

    def is_enabled(self, name: str) -> bool:
        return name not in self.disabled

    def disable(self, name: str) -> bool:
        """Returns False for unknown or protected commands."""
        if name not in self._specs or name in PROTECTED_COMMANDS:
            return False
        self.disabled.add(name)
        return True

    def enable(self, name: str) -> bool:
        if name not in self._specs:
            return False
        self.disabled.discard(name)
        return True

    def check(self, spec: CommandSpec, user_id: int, owner_id: int, public_arr: bool) -> Optional[Outcome]:
        """Run the gates. Returns the refusal to send, or None if the command may run."""
        if spec.name in self.disabled:
            return Outcome(OutcomeKind.DISABLED, "Command Disabled", f"The command `{spec.name}` is currently disabled.")
        try:
            authorize(spec, user_id, owner_id, public_arr)
        except AuthorizationError as e:
            return outcome_for_error(e)
        if spec.cooldown > 0:
            key = (spec.name, user_id)
            now = self._clock()
            last = self._last_used.get(key)
            if last is not None and now - last < spec.cooldown:
                left = spec.cooldown - (now - last)
                return Outcome(OutcomeKind.INFO, "Slow Down", f"Please wait {left:.0f}s before using `{spec.name}` again.")
            self._last_used[key] = now
        return None

    async def dispatch(self, ctx: AppContext, name: str, interaction: discord.Interaction, **options: Any) -> None:
        spec = self.get(name)
        if spec is None:
            logger.warning("Unknown command %r", name)
            return
        refusal = self.check(spec, interaction.user.id, ctx.cfg.owner_user_id, ctx.cfg.public_arr)
        if refusal is not None:
            logger.info("%s -> /%s refused (%s)", interaction.user, name, refusal.kind.value)
            await respond(interaction, refusal)
            return
        logger.debug("%s -> /%s %s", interaction.user, name, options)
        await spec.handler(ctx, interaction, **options)

    def build_app_commands(self, ctx: AppContext) -> List[AppCommand]:
        out: List[AppCommand] = []
        for spec in self:
            out.append(spec.slash(_invoker(self, ctx, spec.name)))
        return out


def authorize(spec: CommandSpec, user_id: int, owner_id: int, public_arr: bool) -> None:
    """Raises AuthorizationError unless the user may run the command."""
    is_owner = user_id == owner_id
    if spec.owner_only and not is_owner:
        raise AuthorizationError("Only the bot owner can use this command.")
    if spec.arr and not public_arr and not is_owner:
        raise AuthorizationError("Media requests are restricted to the bot owner.")


def _invoker(registry: CommandRegistry, ctx: AppContext, name: str) -> Invoke:
    async def invoke(interaction: discord.Interaction, **options: Any) -> None:
        await registry.dispatch(ctx, name, interaction, **options)

    return invoke


async def respond(interaction: discord.Interaction, outcome: Outcome, user: Optional[discord.abc.User] = None) -> None:
    """
    Send an outcome as the interaction's reply. Once the interaction has been deferred the
    visibility was fixed by the defer call, so the deferred message is replaced in place.
    """
    embed = outcome.to_embed(user)
    if interaction.response.is_done():
        await interaction.edit_original_response(embed=embed)
    else:
        await interaction.response.send_message(embed=embed, ephemeral=outcome.ephemeral)

import enum
import logging
from dataclasses import dataclass
from typing import Optional

import discord

from .errors import (
    ApiError,
    AuthorizationError,
    ConfigurationError,
    InvalidQueryError,
    LookupDependencyError,
    MutationError,
    RateLimitError,
    RequestarrError,
    ResolverError,
)

logger = logging.getLogger(__name__)


class OutcomeKind(enum.Enum):
    ADDED = "added"
    MONITORED = "monitored"
    REMOVED = "removed"
    ALREADY_PRESENT = "already_present"
    NO_RESULTS = "no_results"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    TRANSIENT_FAILURE = "transient_failure"
    NOT_AUTHORIZED = "not_authorized"
    INVALID_QUERY = "invalid_query"
    DISABLED = "disabled"
    INFO = "info"


_STYLE = {
    OutcomeKind.ADDED: ("✅", discord.Color.green()),
    OutcomeKind.MONITORED: ("✅", discord.Color.green()),
    OutcomeKind.REMOVED: ("✅", discord.Color.green()),
    OutcomeKind.ALREADY_PRESENT: ("ℹ️", discord.Color.gold()),
    OutcomeKind.NO_RESULTS: ("⚠️", discord.Color.gold()),
    OutcomeKind.NOT_FOUND: ("⚠️", discord.Color.gold()),
    OutcomeKind.NOT_CONFIGURED: ("❌", discord.Color.red()),
    OutcomeKind.TRANSIENT_FAILURE: ("❌", discord.Color.red()),
    OutcomeKind.NOT_AUTHORIZED: ("⛔", discord.Color.orange()),
    OutcomeKind.INVALID_QUERY: ("⚠️", discord.Color.red()),
    OutcomeKind.DISABLED: ("🚫", discord.Color.orange()),
    OutcomeKind.INFO: ("ℹ️", discord.Color.blue()),
}

# Outcomes everyone in the channel may see
PUBLIC_KINDS = {OutcomeKind.ADDED, OutcomeKind.REMOVED}


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    title: str
    message: str

    @property
    def ephemeral(self) -> bool:
        return self.kind not in PUBLIC_KINDS

    def to_embed(self, user: Optional[discord.abc.User] = None) -> discord.Embed:
        emoji, color = _STYLE[self.kind]
        return create_embed_template(f"``{emoji}`` » {self.title}", self.message, user, color=color)


def create_embed_template(title: str, description: str, user: Optional[discord.abc.User] = None, color: Optional[discord.Color] = None) -> discord.Embed:
    embed = discord.Embed(title=title, color=color, timestamp=discord.utils.utcnow())
    if description:
        embed.description = description
    if user is not None:
        embed.set_footer(text=f"Requested by {user}", icon_url=user.display_avatar.url)
    return embed


def outcome_for_error(error: BaseException, noun: str = "item", backend: str = "the backend") -> Outcome:
    """Map a RequestarrError to the reply the user gets. Anything else is a transient failure."""
    if isinstance(error, InvalidQueryError):
        return Outcome(OutcomeKind.INVALID_QUERY, "Invalid Query", str(error))
    if isinstance(error, LookupDependencyError):
        return Outcome(
            OutcomeKind.NOT_CONFIGURED,
            "Not Configured",
            f"No {error.missing} found in {error.backend}. Please configure one in {error.backend} first.",
        )
    if isinstance(error, ConfigurationError):
        return Outcome(OutcomeKind.NOT_CONFIGURED, "Not Configured", f"{backend} is not configured on this bot.")
    if isinstance(error, AuthorizationError):
        return Outcome(OutcomeKind.NOT_AUTHORIZED, "Access Denied", str(error) or "You are not authorized to do this.")
    if isinstance(error, (RateLimitError, ResolverError, MutationError, ApiError)):
        return Outcome(
            OutcomeKind.TRANSIENT_FAILURE,
            "Error",
            f"Failed to reach {backend} for this {noun}. Please try again later.",
        )
    if not isinstance(error, RequestarrError):
        logger.error("Unexpected error mapped to a transient failure: %r", error)
    return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "Something went wrong. Please try again later.")

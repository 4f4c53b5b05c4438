"""
Slash command handlers and the static command registry.

Each handler has the signature `async handler(ctx, interaction, **options)`. The media flows are
split into a pure part (`request_media`, `upcoming_releases`, ...) returning either an Outcome
or an unstarted Carousel, and a thin Discord part that sends whichever came back.
"""
import logging
import time
from datetime import date
from typing import Any, Dict, List, Optional, Union

import discord
from discord import app_commands

from . import library
from .anime import DAYS_OF_WEEK, SEASONS, CatalogEntry, JikanClient, anime_line, release_line
from .api import SecureApiClient, sanitize_search_query
from .backends import MEDIA_BACKENDS, Backend
from .carousel import SEARCH_TIMEOUT, Carousel
from .commands import AppContext, CommandRegistry, CommandSpec, Invoke, respond
from .embeds import Outcome, OutcomeKind, create_embed_template, outcome_for_error
from .errors import ApiError, ConfigurationError, InvalidQueryError, RequestarrError, SchemaError
from .paginator import page_renderer, present, text_pages, truncate
from .schedules import today_in

logger = logging.getLogger(__name__)

CALENDAR_DAYS = 14
CALENDAR_PER_PAGE = 5
INDEXERS_PER_PAGE = 10
SEASONAL_PER_PAGE = 5
FAVORITES_SHOWN = 10
DAILY_SHOWN = 10
OVERVIEW_CHARS = 400

Reply = Union[Outcome, Carousel]


# ---- media requests -------------------------------------------------------

def candidate_renderer(backend: Backend, user: Optional[discord.abc.User] = None):
    def render(candidate, index: int, total: int) -> discord.Embed:
        description = backend.describe(candidate)
        if candidate.overview:
            description = f"{description}\n\n{truncate(candidate.overview, OVERVIEW_CHARS)}"
        embed = create_embed_template(candidate.title, description, user, color=discord.Color.blue())
        if candidate.poster:
            embed.set_image(url=candidate.poster)
        embed.set_footer(text=f"Result {index + 1}/{total}")
        return embed

    return render


async def request_media(client: SecureApiClient, backend: Backend, query: str, user: discord.abc.User) -> Reply:
    """
    Search and either grab straight away (one result) or build a carousel over the results.
    The add context is resolved before any carousel exists, so a backend with no root folder
    or profile fails up front instead of on grab.
    """
    try:
        results = await library.search(client, backend, query)
    except RequestarrError as e:
        return outcome_for_error(e, backend.noun, backend.label)
    if not results:
        return Outcome(OutcomeKind.NO_RESULTS, "No Results", f'No {backend.noun} found for "{query.strip()}".')

    try:
        add_ctx = await library.resolve_add_context(client, backend)
    except RequestarrError as e:
        return outcome_for_error(e, backend.noun, backend.label)

    if len(results) == 1:
        return await library.grab(client, backend, results[0], add_ctx, user)

    async def on_grab(candidate):
        return await library.grab(client, backend, candidate, add_ctx, user)

    return Carousel(results, candidate_renderer(backend, user), owner_id=user.id, on_grab=on_grab, timeout=SEARCH_TIMEOUT)


async def upcoming_releases(client: SecureApiClient, backend: Backend, user: Optional[discord.abc.User] = None, today=None) -> Reply:
    start, end = library.upcoming_window(CALENDAR_DAYS, today)
    try:
        rows = await library.calendar(client, backend, start, end)
    except (ApiError, SchemaError) as e:
        logger.error("%s calendar failed: %s", backend.label, e)
        return outcome_for_error(e, "calendar", backend.label)
    if not rows:
        return Outcome(OutcomeKind.INFO, f"{backend.label} Calendar", f"No upcoming {backend.noun} releases in the next {CALENDAR_DAYS} days.")
    pages = text_pages([backend.format_calendar_line(row) for row in rows], CALENDAR_PER_PAGE)
    return Carousel(pages, page_renderer(f"📅 {backend.label} Calendar", user), owner_id=user.id if user else 0)


async def send_reply(interaction: discord.Interaction, reply: Reply) -> None:
    if isinstance(reply, Carousel):
        await present(reply, interaction)
    else:
        await respond(interaction, reply, interaction.user)


async def arr_command(ctx: AppContext, interaction: discord.Interaction, backend: Backend, action: str, query: str = "", title: str = "") -> None:
    try:
        client = ctx.client_for(backend.key)
    except ConfigurationError as e:
        await respond(interaction, outcome_for_error(e, backend.noun, backend.label))
        return
    await interaction.response.defer(thinking=True)
    if action == "add":
        reply = await request_media(client, backend, query, interaction.user)
    elif action == "remove":
        reply = await library.remove_by_title(client, backend, title, interaction.user)
    elif action == "calendar":
        reply = await upcoming_releases(client, backend, interaction.user)
    else:
        raise ValueError(f"Unknown {backend.key} action {action!r}")
    await send_reply(interaction, reply)


def _arr_handler(key: str):
    backend = MEDIA_BACKENDS[key]

    async def handler(ctx: AppContext, interaction: discord.Interaction, **options: Any) -> None:
        await arr_command(ctx, interaction, backend, **options)

    return handler


def _arr_slash(key: str):
    backend = MEDIA_BACKENDS[key]

    def build(invoke: Invoke) -> app_commands.Group:
        group = app_commands.Group(name=key, description=f"Manage {backend.noun} requests in {backend.label}")

        @app_commands.describe(query=f"{backend.noun.capitalize()} name or {backend.id_label}")
        async def add(interaction: discord.Interaction, query: str):
            await invoke(interaction, action="add", query=query)

        @app_commands.describe(title=f"Exact {backend.noun} title as shown in {backend.label}")
        async def remove(interaction: discord.Interaction, title: str):
            await invoke(interaction, action="remove", title=title)

        async def calendar(interaction: discord.Interaction):
            await invoke(interaction, action="calendar")

        group.add_command(app_commands.Command(name="add", description=f"➕ Add a {backend.noun} to {backend.label}", callback=add))
        group.add_command(app_commands.Command(name="remove", description=f"❌ Remove a {backend.noun} from {backend.label}", callback=remove))
        group.add_command(app_commands.Command(name="calendar", description=f"📅 Upcoming {backend.label} releases", callback=calendar))
        return group

    return build


# ---- prowlarr -------------------------------------------------------------

def indexer_line(row: Dict[str, Any]) -> str:
    url = "?"
    for f in row.get("fields") or []:
        if isinstance(f, dict) and f.get("name") in ("baseUrl", "url") and f.get("value"):
            url = str(f["value"])
            break
    state = "enabled" if row.get("enable") else "disabled"
    return f"**{row.get('name') or '?'}** ({state})\nType: {row.get('implementation') or '?'}\nURL: {url}"


def summarize_tests(indexers: List[Dict[str, Any]], results: Any) -> str:
    names = {row.get("id"): row.get("name") for row in indexers if isinstance(row, dict)}
    lines = []
    for res in results if isinstance(results, list) else []:
        if not isinstance(res, dict):
            continue
        name = names.get(res.get("id")) or f"Indexer {res.get('id')}"
        if res.get("isValid"):
            lines.append(f"✅ **{name}**")
        else:
            failures = [f.get("errorMessage") for f in res.get("validationFailures") or [] if isinstance(f, dict)]
            reason = failures[0] if failures and failures[0] else "failed"
            lines.append(f"❌ **{name}**: {reason}")
    return "\n".join(lines) or "Test completed. Check Prowlarr for details."


async def list_indexers(client: SecureApiClient, user: Optional[discord.abc.User] = None) -> Reply:
    try:
        rows = await client.get("/indexer")
    except ApiError as e:
        logger.error("Prowlarr indexer fetch failed: %s", e)
        return outcome_for_error(e, "indexer list", "Prowlarr")
    rows = [r for r in rows or [] if isinstance(r, dict)]
    if not rows:
        return Outcome(OutcomeKind.INFO, "Prowlarr Indexers", "No indexers found.")
    pages = text_pages([indexer_line(r) for r in rows], INDEXERS_PER_PAGE)
    return Carousel(pages, page_renderer("📋 Prowlarr Indexers", user), owner_id=user.id if user else 0)


async def run_indexer_tests(client: SecureApiClient) -> Outcome:
    try:
        indexers = await client.get("/indexer") or []
        results = await client.post("/indexer/testall")
    except ApiError as e:
        logger.error("Prowlarr testall failed: %s", e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "Failed to test all indexers. Please try again later.")
    return Outcome(OutcomeKind.INFO, "🧪 Test All Indexers", truncate(summarize_tests(indexers, results)))


async def prowlarr_command(ctx: AppContext, interaction: discord.Interaction, action: str) -> None:
    try:
        client = ctx.client_for("prowlarr")
    except ConfigurationError as e:
        await respond(interaction, outcome_for_error(e, "indexer", "Prowlarr"))
        return
    await interaction.response.defer(thinking=True)
    if action == "indexers":
        reply = await list_indexers(client, interaction.user)
    else:
        reply = await run_indexer_tests(client)
    await send_reply(interaction, reply)


def _prowlarr_slash(invoke: Invoke) -> app_commands.Group:
    group = app_commands.Group(name="prowlarr", description="Manage indexers in Prowlarr")

    async def indexers(interaction: discord.Interaction):
        await invoke(interaction, action="indexers")

    async def testall(interaction: discord.Interaction):
        await invoke(interaction, action="testall")

    group.add_command(app_commands.Command(name="indexers", description="📋 List all indexers in Prowlarr", callback=indexers))
    group.add_command(app_commands.Command(name="testall", description="🧪 Test all indexers in Prowlarr", callback=testall))
    return group


# ---- myanimelist ----------------------------------------------------------

def _stat_block(stats: Dict[str, Any], kind: str) -> str:
    block = stats.get(kind) or {}
    days = "days_watched" if kind == "anime" else "days_read"
    return (
        f"**Days {'Watched' if kind == 'anime' else 'Read'}:** {block.get(days, '?')}\n"
        f"**Average Score:** {block.get('mean_score', '?')}\n"
        f"**Total Entries:** {block.get('total_entries', '?')}\n"
        f"**Completed:** {block.get('completed', '?')}"
    )


async def mal_profile(jikan: JikanClient, username: str, user: Optional[discord.abc.User] = None) -> Union[Outcome, discord.Embed]:
    username = username.strip()
    if not username or "/" in username:
        return Outcome(OutcomeKind.INVALID_QUERY, "Invalid Query", "Please provide a MyAnimeList username.")
    try:
        profile = await jikan.user(username)
        if profile is None:
            return Outcome(OutcomeKind.NOT_FOUND, "Not Found", f'User "{username}" not found.')
        stats = await jikan.statistics(username) or {}
        favorites = await jikan.favorites(username)
    except ApiError as e:
        logger.error("Jikan lookup for %s failed: %s", username, e)
        return outcome_for_error(e, "profile", "MyAnimeList")

    embed = create_embed_template(f"{username} » MyAnimeList Statistics", "", user, color=discord.Color.dark_purple())
    embed.url = f"https://myanimelist.net/profile/{username}"
    image = ((profile.get("images") or {}).get("jpg") or {}).get("image_url")
    if image:
        embed.set_thumbnail(url=image)
    embed.add_field(name="Anime Statistics", value=_stat_block(stats, "anime"), inline=True)
    embed.add_field(name="Manga Statistics", value=_stat_block(stats, "manga"), inline=True)
    favs = "\n".join(f"[{a.title}]({a.url})" for a in favorites[:FAVORITES_SHOWN])
    embed.add_field(name="Favorite Anime", value=truncate(favs, 1024) or "No favorite anime", inline=False)
    return embed


async def seasonal_anime(jikan: JikanClient, season: str, year: int, user: Optional[discord.abc.User] = None) -> Reply:
    if season not in SEASONS or not 1917 <= year <= 2100:
        return Outcome(OutcomeKind.INVALID_QUERY, "Invalid Query", "Please provide a valid season and year.")
    try:
        animes = await jikan.season(year, season)
    except ApiError as e:
        logger.error("Jikan season %s %s failed: %s", season, year, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "Error fetching seasonal anime. Please try again later.")
    if not animes:
        return Outcome(OutcomeKind.NO_RESULTS, "No Anime", "No anime found for the selected season and year.")
    pages = text_pages([anime_line(a, synopsis_chars=100) for a in animes], SEASONAL_PER_PAGE)
    title = f"Anime List » {season.capitalize()} {year}"
    return Carousel(pages, page_renderer(title, user, color=discord.Color.dark_purple()), owner_id=user.id if user else 0)


async def mal_command(ctx: AppContext, interaction: discord.Interaction, action: str, username: str = "", season: str = "", year: int = 0) -> None:
    await interaction.response.defer(thinking=True)
    if action == "search":
        reply = await mal_profile(ctx.jikan, username, interaction.user)
        if isinstance(reply, discord.Embed):
            await interaction.edit_original_response(embed=reply)
            return
    else:
        reply = await seasonal_anime(ctx.jikan, season, year, interaction.user)
    await send_reply(interaction, reply)


def _mal_slash(invoke: Invoke) -> app_commands.Group:
    group = app_commands.Group(name="mal", description="🔍 Search MyAnimeList user stats and anime")

    @app_commands.describe(username="MyAnimeList username")
    async def search(interaction: discord.Interaction, username: str):
        await invoke(interaction, action="search", username=username)

    @app_commands.describe(season="Season", year="Year (e.g. 2024)")
    @app_commands.choices(season=[app_commands.Choice(name=s.capitalize(), value=s) for s in SEASONS])
    async def seasonal(interaction: discord.Interaction, season: app_commands.Choice[str], year: int):
        await invoke(interaction, action="seasonal", season=season.value, year=year)

    group.add_command(app_commands.Command(name="search", description="🔍 MAL user stats and favorites", callback=search))
    group.add_command(app_commands.Command(name="seasonal", description="📅 Show seasonal anime", callback=seasonal))
    return group


# ---- anime catalog --------------------------------------------------------

def catalog_embed(entry: CatalogEntry, user: Optional[discord.abc.User] = None) -> discord.Embed:
    length = f"Episodes: {entry.length or '?'}" if entry.kind == "anime" else f"Chapters: {entry.length or '?'}"
    lines = [
        length,
        "",
        f"Description: {truncate(entry.synopsis, OVERVIEW_CHARS) if entry.synopsis else 'No description available.'}",
        f"Score: {entry.score if entry.score is not None else 'N/A'}",
        f"Genres: {', '.join(entry.genres) or 'N/A'}",
    ]
    if entry.kind == "anime":
        lines.append(f"Aired: {entry.aired or 'N/A'}")
    color = discord.Color(0xFF0000) if entry.kind == "anime" else discord.Color(0x00FF00)
    embed = create_embed_template(entry.title, "\n".join(lines), user, color=color)
    embed.url = entry.url
    if entry.image:
        embed.set_thumbnail(url=entry.image)
    return embed


async def catalog_search(jikan: JikanClient, kind: str, query: str, user: Optional[discord.abc.User] = None) -> Union[Outcome, discord.Embed]:
    try:
        cleaned = sanitize_search_query(query)
    except InvalidQueryError as e:
        return outcome_for_error(e)
    try:
        entry = await jikan.search(kind, cleaned)
    except (ApiError, SchemaError) as e:
        logger.error("Jikan %s search for %r failed: %s", kind, cleaned, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "There was an error fetching the data. Please try again later.")
    if entry is None:
        return Outcome(OutcomeKind.NO_RESULTS, "No Results", f'No results found for "{cleaned}".')
    return catalog_embed(entry, user)


async def search_command(ctx: AppContext, interaction: discord.Interaction, kind: str, query: str = "") -> None:
    await interaction.response.defer(thinking=True)
    reply = await catalog_search(ctx.jikan, kind, query, interaction.user)
    if isinstance(reply, discord.Embed):
        await interaction.edit_original_response(embed=reply)
        return
    await respond(interaction, reply, interaction.user)


def _search_slash(invoke: Invoke) -> app_commands.Group:
    group = app_commands.Group(name="search", description="🔍 Search for an anime or manga")

    @app_commands.describe(query="The name of the anime")
    async def anime(interaction: discord.Interaction, query: str):
        await invoke(interaction, kind="anime", query=query)

    @app_commands.describe(query="The name of the manga")
    async def manga(interaction: discord.Interaction, query: str):
        await invoke(interaction, kind="manga", query=query)

    group.add_command(app_commands.Command(name="anime", description="Search for an anime", callback=anime))
    group.add_command(app_commands.Command(name="manga", description="Search for a manga", callback=manga))
    return group


async def todays_anime(jikan: JikanClient, today: date) -> Outcome:
    day = DAYS_OF_WEEK[today.weekday()]
    try:
        animes = await jikan.schedule(day)
    except ApiError as e:
        logger.error("Jikan schedule for %s failed: %s", day, e)
        return Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "Could not fetch today's anime releases. Please try again later.")
    if not animes:
        return Outcome(OutcomeKind.NO_RESULTS, "No Releases", "No anime is scheduled for today.")
    body = "\n\n".join(release_line(a) for a in animes[:DAILY_SHOWN])
    return Outcome(OutcomeKind.INFO, "📅 Today's Anime Releases", truncate(body))


async def daily_command(ctx: AppContext, interaction: discord.Interaction) -> None:
    await interaction.response.defer(thinking=True)
    outcome = await todays_anime(ctx.jikan, today_in(ctx.cfg.digest_timezone))
    await respond(interaction, outcome, interaction.user)


# ---- utility --------------------------------------------------------------

def help_text(registry: CommandRegistry) -> str:
    lines = []
    for spec in registry:
        active = registry.is_enabled(spec.name)
        line = f"{'✨' if active else '❌'} `/{spec.name}` {spec.description}"
        if spec.example:
            line = f"{line}\n> `{spec.example}`"
        lines.append(line)
    return "\n\n".join(lines)


async def help_command(ctx: AppContext, interaction: discord.Interaction) -> None:
    await respond(interaction, Outcome(OutcomeKind.INFO, "Help", truncate(help_text(ctx.registry))), interaction.user)


async def backend_latency(client: SecureApiClient) -> Optional[float]:
    start = time.perf_counter()
    try:
        await client.get("/system/status")
    except ApiError as e:
        logger.warning("%s status check failed: %s", client.name, e)
        return None
    return (time.perf_counter() - start) * 1000


async def ping_command(ctx: AppContext, interaction: discord.Interaction) -> None:
    await interaction.response.defer(thinking=True)
    lines = []
    if ctx.bot is not None:
        lines.append(f"✈️ Discord API: **{ctx.bot.latency * 1000:.0f}ms**")
    for name, client in sorted(ctx.clients.items()):
        ms = await backend_latency(client)
        status = f"🟢 **{ms:.0f}ms**" if ms is not None else "🔴 **Error**"
        lines.append(f"{name.capitalize()}: {status}")
    for name in sorted(ctx.cfg.backend_errors):
        lines.append(f"{name.capitalize()}: ⚪ **Not configured**")
    await respond(interaction, Outcome(OutcomeKind.INFO, "🏓 Pong! Service Latency", "\n".join(lines)), interaction.user)


def module_action(registry: CommandRegistry, action: str, command: str = "") -> Outcome:
    command = command.strip().lstrip("/")
    if action == "show":
        body = "\n".join(
            f"{'✨' if registry.is_enabled(n) else '❌'} `{n}` ({'active' if registry.is_enabled(n) else 'inactive'})"
            for n in registry.names()
        )
        return Outcome(OutcomeKind.INFO, "Command Status", body or "No commands found.")
    if command not in registry:
        return Outcome(OutcomeKind.NOT_FOUND, "Unknown Command", f"There is no command `{command}`.")
    if action == "disable":
        if not registry.disable(command):
            return Outcome(OutcomeKind.NOT_AUTHORIZED, "Action Forbidden", f"You cannot disable the `{command}` command.")
        logger.info("Command %s disabled", command)
        return Outcome(OutcomeKind.INFO, "Command Disabled", f"🚫 Command `{command}` has been disabled.")
    registry.enable(command)
    logger.info("Command %s enabled", command)
    return Outcome(OutcomeKind.INFO, "Command Enabled", f"✅ Command `{command}` has been enabled.")


async def module_command(ctx: AppContext, interaction: discord.Interaction, action: str, command: str = "") -> None:
    await respond(interaction, module_action(ctx.registry, action, command), interaction.user)


def _simple_slash(name: str, description: str):
    def build(invoke: Invoke) -> app_commands.Command:
        async def callback(interaction: discord.Interaction):
            await invoke(interaction)

        return app_commands.Command(name=name, description=description, callback=callback)

    return build


def _module_slash(invoke: Invoke) -> app_commands.Group:
    group = app_commands.Group(name="module", description="🛠️ Enable or disable bot commands")

    @app_commands.describe(command="Command name")
    async def enable(interaction: discord.Interaction, command: str):
        await invoke(interaction, action="enable", command=command)

    @app_commands.describe(command="Command name")
    async def disable(interaction: discord.Interaction, command: str):
        await invoke(interaction, action="disable", command=command)

    async def show(interaction: discord.Interaction):
        await invoke(interaction, action="show")

    group.add_command(app_commands.Command(name="enable", description="✅ Enable a command", callback=enable))
    group.add_command(app_commands.Command(name="disable", description="🚫 Disable a command", callback=disable))
    group.add_command(app_commands.Command(name="show", description="📋 Show the status of all commands", callback=show))
    return group


def _arr_spec(key: str) -> CommandSpec:
    backend = MEDIA_BACKENDS[key]
    return CommandSpec(
        name=key,
        description=f"Search, add, remove and browse upcoming {backend.label} releases",
        handler=_arr_handler(key),
        slash=_arr_slash(key),
        arr=True,
        cooldown=3.0,
        example=backend.examples,
    )


def build_registry() -> CommandRegistry:
    return CommandRegistry([
        _arr_spec("radarr"),
        _arr_spec("sonarr"),
        _arr_spec("lidarr"),
        _arr_spec("readarr"),
        _arr_spec("whisparr"),
        CommandSpec(
            name="prowlarr",
            description="List and test Prowlarr indexers",
            handler=prowlarr_command,
            slash=_prowlarr_slash,
            arr=True,
            example="/prowlarr indexers",
        ),
        CommandSpec(
            name="mal",
            description="MyAnimeList user stats and seasonal anime",
            handler=mal_command,
            slash=_mal_slash,
            cooldown=3.0,
            example="/mal search username:MyAnimeListUser",
        ),
        CommandSpec(
            name="search",
            description="Look up an anime or manga on MyAnimeList",
            handler=search_command,
            slash=_search_slash,
            cooldown=3.0,
            example='/search anime query:"Frieren"',
        ),
        CommandSpec(
            name="daily",
            description="Today's anime releases",
            handler=daily_command,
            slash=_simple_slash("daily", "📅 Show today's anime releases"),
            cooldown=3.0,
        ),
        CommandSpec(
            name="help",
            description="Show all available commands and usage examples",
            handler=help_command,
            slash=_simple_slash("help", "📖 Show all available commands and usage examples"),
        ),
        CommandSpec(
            name="ping",
            description="Latency of Discord and every configured backend",
            handler=ping_command,
            slash=_simple_slash("ping", "🏓 Test the latency of Discord and the backends"),
            cooldown=5.0,
        ),
        CommandSpec(
            name="module",
            description="Enable or disable commands (owner only)",
            handler=module_command,
            slash=_module_slash,
            owner_only=True,
            example="/module disable command:whisparr",
        ),
    ])

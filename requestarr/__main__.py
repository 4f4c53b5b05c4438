import logging
import time

import discord
from discord import app_commands
from discord.ext import commands, tasks
from zoneinfo import ZoneInfo

from .commands import AppContext, respond
from .config import Config, load_config
from .embeds import Outcome, OutcomeKind
from .errors import ConfigurationError
from .handlers import build_registry
from .schedules import send_digests

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("Requestarr")


class RequestarrBot(commands.Bot):
    def __init__(self, cfg: Config):
        super().__init__(command_prefix=commands.when_mentioned, intents=discord.Intents.default(), help_command=None)
        self.cfg = cfg
        self.ctx = AppContext.from_config(cfg, build_registry(), bot=self)

    async def close(self):
        # HTTP sessions first, the gateway connection last
        try:
            await self.ctx.close()
        except Exception:
            logger.exception("Failed to close backend sessions")
        await super().close()


def build_bot(cfg: Config) -> RequestarrBot:
    bot = RequestarrBot(cfg)
    ctx = bot.ctx
    app_cmds = ctx.registry.build_app_commands(ctx)

    _last_sync_ts: float = 0.0

    async def register_slash_commands(force: bool = False):
        nonlocal _last_sync_ts
        # Cooldown 60s between sync attempts
        if (not force) and ((time.time() - _last_sync_ts) < 60):
            return
        try:
            if cfg.guild_ids:
                # Wipe global commands so guilds don't show duplicates
                bot.tree.clear_commands(guild=None)
                await bot.tree.sync()
                for gid in cfg.guild_ids:
                    guild_obj = discord.Object(id=gid)
                    bot.tree.clear_commands(guild=guild_obj)
                    for cmd in app_cmds:
                        bot.tree.add_command(cmd, guild=guild_obj)
                    synced = await bot.tree.sync(guild=guild_obj)
                    logger.info("Slash commands synced for guild %s: %s", gid, [c.name for c in synced])
            else:
                bot.tree.clear_commands(guild=None)
                for cmd in app_cmds:
                    bot.tree.add_command(cmd)
                synced = await bot.tree.sync()
                logger.info("Global slash commands synced: %s", [c.name for c in synced])
            _last_sync_ts = time.time()
        except discord.HTTPException:
            logger.exception("Failed to register/sync slash commands")

    @tasks.loop(time=cfg.digest_time.replace(tzinfo=ZoneInfo(cfg.digest_timezone)))
    async def daily_digest():
        try:
            owner = await bot.fetch_user(cfg.owner_user_id)
            delivered = await send_digests(ctx, owner)
            logger.info("Daily digest: %d session(s) delivered", delivered)
        except Exception:
            logger.exception("Daily digest failed")

    @bot.event
    async def on_ready():
        # Apply runtime log level
        logging.getLogger().setLevel(getattr(logging, cfg.log_level, logging.INFO))
        logger.info("Logged in as %s (ID: %s)", bot.user, bot.user.id)
        logger.info("Backends: %s", ", ".join(sorted(ctx.clients)) or "none")
        for name, reason in cfg.backend_errors.items():
            logger.warning("Backend %s disabled: %s", name, reason)
        try:
            activity = discord.Activity(type=discord.ActivityType.watching, name="your requests")
            await bot.change_presence(status=discord.Status.online, activity=activity)
        except discord.HTTPException:
            logger.exception("Failed to set bot presence")

        if cfg.enable_digests and not daily_digest.is_running():
            daily_digest.start()
            logger.info("Daily digest scheduled at %s (%s)", cfg.digest_time.strftime("%H:%M"), cfg.digest_timezone)
        await register_slash_commands()

    @bot.event
    async def on_guild_available(guild: discord.Guild):
        await register_slash_commands()

    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
        original = getattr(error, "original", error)
        logger.exception("Unhandled error in /%s", interaction.command.qualified_name if interaction.command else "?", exc_info=original)
        try:
            await respond(interaction, Outcome(OutcomeKind.TRANSIENT_FAILURE, "Error", "There was an error while executing this command!"))
        except discord.HTTPException:
            logger.debug("Could not report the error to the user")
        if cfg.notify_owner_on_error:
            try:
                owner = await bot.fetch_user(cfg.owner_user_id)
                await owner.send(f"⚠️ `/{interaction.command.qualified_name if interaction.command else '?'}` failed: `{original!r}`"[:2000])
            except discord.HTTPException:
                logger.warning("Could not notify the owner about an error")

    return bot


def main():
    try:
        cfg = load_config()
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1)
    bot = build_bot(cfg)
    # Root logging is already configured above
    bot.run(cfg.discord_token, log_handler=None)


if __name__ == "__main__":
    main()

"""
Nagham Discord Bot — Main entry point.
Loads configuration, initializes services, and starts the bot.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import discord
from aiohttp import web
from discord import app_commands
from discord.ext import commands

from config.settings import Settings
from utils.embedder import Embedder
from utils.errors import UnexpectedFailure
from utils.playback import SessionRegistry
from utils.track_resolver import TrackResolver

# ── Logging ──────────────────────────────────────────────────────────
settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s │ %(levelname)-8s │ %(name)-20s │ %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("nagham")

# ── Cog list ─────────────────────────────────────────────────────────
COGS = [
    "cogs.music",
]


# ── Bot subclass ─────────────────────────────────────────────────────
class NaghamBot(commands.Bot):
    """Custom Bot with shared services attached."""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.guilds = True        # Guild (server) events
        intents.voice_states = True  # Who is in which voice channel
        intents.typing = False       # Not used; reduces gateway traffic

        super().__init__(
            command_prefix="!",  # Slash commands are primary
            intents=intents,
            application_id=settings.application_id,
        )

        self.settings = settings
        # One playback session per guild, shared by every cog
        self.sessions = SessionRegistry()
        self.resolver = TrackResolver(
            timeout=settings.resolve_timeout,
            quality=settings.stream_quality,
            cache_ttl=settings.search_cache_ttl,
        )
        self._health_runner: Optional[web.AppRunner] = None

    # ── Startup ──────────────────────────────────────────────────────

    async def setup_hook(self) -> None:
        """Called once when the bot starts. Load cogs and sync commands."""
        logger.info("Running setup_hook…")

        for cog_path in COGS:
            try:
                await self.load_extension(cog_path)
                logger.info("Loaded cog: %s", cog_path)
            except Exception as exc:
                logger.error("Failed to load cog %s: %s", cog_path, exc)

        await self._sync_commands()

        if self.settings.health_server:
            await self._start_health_server()

    async def _sync_commands(self) -> None:
        """Register slash commands, per-guild when GUILD_ID is set (instant)."""
        try:
            if self.settings.guild_id:
                guild = discord.Object(id=self.settings.guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                logger.info("Synced %d slash commands to guild %d", len(synced), self.settings.guild_id)
            else:
                synced = await self.tree.sync()
                logger.info("Synced %d global slash commands", len(synced))
        except Exception as exc:
            logger.error("Failed to sync commands: %s", exc)

    async def on_ready(self) -> None:
        logger.info("🎶 %s is online! Guilds: %d", self.user, len(self.guilds))
        await self.change_presence(
            activity=discord.Activity(
                type=discord.ActivityType.listening,
                name="/play",
            )
        )

    # ── Shutdown ─────────────────────────────────────────────────────

    async def close(self) -> None:
        logger.info("Shutting down…")
        await self.sessions.stop_all()
        self.resolver.shutdown()
        if self._health_runner:
            await self._health_runner.cleanup()
        await super().close()

    # ── Global Error Handler ─────────────────────────────────────────

    async def on_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        """Last resort for errors that escape a command (e.g. failed checks)."""
        logger.error("Unhandled app command error in /%s: %s",
                     interaction.command.name if interaction.command else "?", error, exc_info=error)
        embed = Embedder.from_error(UnexpectedFailure())
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as exc:
            logger.debug("Could not report app command error: %s", exc)

    # ── Health Check Server ──────────────────────────────────────────

    async def _start_health_server(self) -> None:
        """Serve ``/`` and ``/health`` so the host can check the process is alive."""
        app = web.Application()
        for path in ("/", "/health"):
            app.router.add_get(path, self._health_handler)
        self._health_runner = web.AppRunner(app)
        await self._health_runner.setup()
        await web.TCPSite(self._health_runner, "0.0.0.0", self.settings.port).start()
        logger.info("Health-check server listening on port %d", self.settings.port)

    async def _health_handler(self, _request: web.Request) -> web.Response:
        playing = sum(1 for s in self.sessions.sessions() if s.playing)
        return web.json_response(
            {
                "status": "ok" if self.is_ready() else "starting",
                "bot": str(self.user),
                "guilds": len(self.guilds),
                "sessions": len(self.sessions),
                "playing": playing,
                "latency_ms": round(self.latency * 1000, 2) if self.is_ready() else None,
            }
        )


# ── Entry Point ──────────────────────────────────────────────────────
def main() -> None:
    errors = settings.validate()
    if errors:
        for e in errors:
            logger.critical("CONFIG ERROR: %s", e)
        sys.exit(1)

    bot = NaghamBot(settings)
    bot.tree.on_error = bot.on_app_command_error

    try:
        bot.run(settings.discord_token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as exc:
        logger.critical("Bot crashed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

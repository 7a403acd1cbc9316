"""
Tests for cogs/music.py — the Interaction adapter and voice-state handling.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import discord

from cogs.music import InteractionContext, MusicCog
from fakes import FakeChannel, FakeTransport, build_session, make_track, settle
from utils.playback import SessionRegistry, SessionState


def make_interaction(*, done=False, voice_channel=None):
    interaction = MagicMock()
    interaction.guild_id = 1
    interaction.channel_id = 100
    interaction.user = MagicMock(spec=discord.Member)
    interaction.user.__str__.return_value = "alice#1234"
    interaction.user.voice = MagicMock(channel=voice_channel) if voice_channel else None
    interaction.response.is_done.return_value = done
    interaction.response.defer = AsyncMock()
    interaction.response.send_message = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


def make_bot(registry):
    bot = MagicMock()
    bot.user.id = 999
    bot.sessions = registry
    bot.settings.connect_timeout = 1.0
    bot.settings.queue_page_size = 10
    return bot


def bot_member(member_id=999):
    member = MagicMock()
    member.id = member_id
    member.guild.id = 1
    return member


def voice_state(channel):
    return MagicMock(channel=channel)


class TestInteractionContext(unittest.IsolatedAsyncioTestCase):
    async def test_fields(self):
        ctx = InteractionContext(make_interaction(), "play", query="lofi")
        self.assertEqual(ctx.guild_id, 1)
        self.assertEqual(ctx.text_channel_id, 100)
        self.assertEqual(ctx.caller_tag, "alice#1234")
        self.assertEqual(ctx.get_string_option("query"), "lofi")
        self.assertIsNone(ctx.get_string_option("missing"))

    async def test_voice_channel(self):
        channel = FakeChannel(10)
        ctx = InteractionContext(make_interaction(voice_channel=channel), "play")
        self.assertIs(ctx.get_caller_voice_channel(), channel)
        self.assertIsNone(InteractionContext(make_interaction(), "play").get_caller_voice_channel())

    async def test_reply_before_and_after_defer(self):
        interaction = make_interaction()
        ctx = InteractionContext(interaction, "queue")
        embed = discord.Embed(title="x")

        await ctx.reply(embed, ephemeral=True)
        interaction.response.send_message.assert_awaited_once_with(embed=embed, ephemeral=True)

        interaction.response.is_done.return_value = True
        await ctx.defer()
        interaction.response.defer.assert_not_awaited()
        await ctx.reply(embed)
        interaction.followup.send.assert_awaited_once_with(embed=embed, ephemeral=False)


class TestVoiceStateUpdate(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = SessionRegistry()
        self.cog = MusicCog(make_bot(self.registry))
        self.session = build_session(self.registry)
        await self.session.enqueue(make_track("A"), FakeChannel(10))

    async def test_disconnect_stops_session(self):
        await self.cog.on_voice_state_update(
            bot_member(), voice_state(FakeChannel(10)), voice_state(None)
        )
        self.assertTrue(self.session.destroyed)
        self.assertNotIn(1, self.registry)

    async def test_move_follows_channel(self):
        await self.cog.on_voice_state_update(
            bot_member(), voice_state(FakeChannel(10)), voice_state(FakeChannel(20))
        )
        self.assertEqual(self.session.voice_channel_id, 20)
        self.assertEqual(self.session.connected_channel_id, 20)
        self.assertEqual(self.session.now_playing.title, "A")

        # a later disconnect is recognised against the new channel
        await self.cog.on_voice_state_update(
            bot_member(), voice_state(FakeChannel(20)), voice_state(None)
        )
        self.assertTrue(self.session.destroyed)

    async def test_other_members_are_ignored(self):
        await self.cog.on_voice_state_update(
            bot_member(123), voice_state(FakeChannel(10)), voice_state(None)
        )
        self.assertFalse(self.session.destroyed)

    async def test_disconnect_from_other_channel_is_ignored(self):
        await self.cog.on_voice_state_update(
            bot_member(), voice_state(FakeChannel(30)), voice_state(None)
        )
        self.assertFalse(self.session.destroyed)
        self.assertIs(self.registry.get(1), self.session)


class TestStaleVoiceEvents(unittest.IsolatedAsyncioTestCase):
    async def test_old_disconnect_does_not_stop_connecting_session(self):
        registry = SessionRegistry()
        cog = MusicCog(make_bot(registry))
        gate = asyncio.Event()
        session = build_session(registry, transport=FakeTransport(gate=gate))

        pending = asyncio.create_task(session.enqueue(make_track("A"), FakeChannel(10)))
        await settle()
        self.assertIs(session.state, SessionState.CONNECTING)

        # the previous session's connection in the same channel going away
        await cog.on_voice_state_update(
            bot_member(), voice_state(FakeChannel(10)), voice_state(None)
        )
        self.assertFalse(session.destroyed)

        gate.set()
        self.assertEqual(await pending, 1)
        self.assertIs(session.state, SessionState.PLAYING)
        self.assertIs(registry.get(1), session)


if __name__ == "__main__":
    unittest.main()

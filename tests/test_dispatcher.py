"""
Tests for the command dispatcher: validation, replies and session wiring.
"""

import asyncio
import unittest

from fakes import (
    FakeChannel,
    FakeContext,
    FakePlayer,
    FakeResolver,
    FakeTransport,
    make_track,
    settle,
)
from utils.dispatcher import CommandDispatcher
from utils.embedder import Embedder
from utils.playback import PlaybackSession, SessionRegistry, SessionState

CH10 = FakeChannel(10)
CH20 = FakeChannel(20)


class DispatcherTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = SessionRegistry()
        self.resolver = FakeResolver(known={t: make_track(t) for t in ("A", "B", "C", "D")})
        self.transport = FakeTransport()
        self.players = []
        self.dispatcher = CommandDispatcher(
            self.registry, self.resolver, self._factory, queue_page_size=2
        )

    def _factory(self, ctx, voice_channel):
        player = FakePlayer()
        self.players.append(player)
        return PlaybackSession(
            ctx.guild_id,
            voice_channel=voice_channel,
            text_channel_id=ctx.text_channel_id,
            transport=self.transport,
            player=player,
            resolver=self.resolver,
            registry=self.registry,
            connect_timeout=1.0,
        )

    async def run_cmd(self, name, **kw):
        ctx = FakeContext(name, **kw)
        await self.dispatcher.dispatch(ctx)
        return ctx

    async def play(self, query, channel=CH10, **kw):
        return await self.run_cmd("play", voice_channel=channel, query=query, **kw)

    def only_reply(self, ctx):
        self.assertEqual(len(ctx.replies), 1)
        return ctx.replies[0]


class TestPlay(DispatcherTestCase):
    async def test_requires_voice_channel(self):
        ctx = await self.run_cmd("play", query="A")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Not in VC")
        self.assertTrue(ephemeral)
        self.assertFalse(ctx.deferred)
        self.assertEqual(self.resolver.resolve_calls, [])

    async def test_empty_query(self):
        ctx = await self.play("   ")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ No Results")
        self.assertEqual(self.resolver.resolve_calls, [])

    async def test_not_found_creates_no_session(self):
        ctx = await self.play("nothing like this")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ No Results")
        self.assertFalse(ephemeral)
        self.assertTrue(ctx.deferred)
        self.assertNotIn(1, self.registry)

    async def test_first_play_starts_playback(self):
        ctx = await self.play("A", caller_tag="alice#1234")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "\U0001f3a7 Now Playing")
        self.assertIn("[A](https://youtu.be/A)", embed.description)
        self.assertEqual(embed.fields[0].value, "alice#1234")
        self.assertFalse(ephemeral)

        session = self.registry.get(1)
        self.assertIs(session.state, SessionState.PLAYING)
        self.assertEqual(session.now_playing.requested_by, "alice#1234")
        self.assertEqual(self.transport.calls, [CH10])

    async def test_second_play_is_queued(self):
        await self.play("A")
        ctx = await self.play("B")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "✅ Added to Queue")
        self.assertIn("Position: #1", embed.description)
        self.assertEqual(len(self.players), 1)

    async def test_other_channel_is_rejected_before_lookup(self):
        await self.play("A")
        ctx = await self.play("B", channel=CH20)
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Busy Elsewhere")
        self.assertTrue(ephemeral)
        self.assertEqual(self.resolver.resolve_calls, ["A"])
        self.assertEqual(self.registry.get(1).upcoming(), [])

    async def test_mismatch_while_connecting(self):
        gate = asyncio.Event()
        self.transport.gate = gate
        first = asyncio.create_task(self.play("A"))
        await settle()

        ctx = await self.play("B", channel=CH20)
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Busy Elsewhere")

        gate.set()
        first_ctx = await first
        self.assertEqual(self.only_reply(first_ctx)[0].title, "\U0001f3a7 Now Playing")
        self.assertEqual(self.registry.get(1).upcoming(), [])

    async def test_connection_timeout(self):
        self.transport.gate = asyncio.Event()
        self.dispatcher.session_factory = lambda ctx, ch: PlaybackSession(
            ctx.guild_id,
            voice_channel=ch,
            text_channel_id=ctx.text_channel_id,
            transport=self.transport,
            player=FakePlayer(),
            resolver=self.resolver,
            registry=self.registry,
            connect_timeout=0.05,
        )
        ctx = await self.play("A")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ Connection Error")
        self.assertNotIn(1, self.registry)

    async def test_guilds_get_separate_sessions(self):
        await self.play("A", guild_id=1)
        await self.play("B", guild_id=2)
        self.assertIsNot(self.registry.get(1), self.registry.get(2))
        self.assertEqual(self.registry.get(2).now_playing.title, "B")


class TestQueueAndNow(DispatcherTestCase):
    async def test_queue_lists_tracks_in_order(self):
        for title in ("A", "B", "C", "D"):
            await self.play(title)
        ctx = await self.run_cmd("queue")
        embed, ephemeral = self.only_reply(ctx)
        self.assertFalse(ephemeral)
        lines = embed.description.splitlines()
        self.assertTrue(lines[0].endswith("[A](https://youtu.be/A)"))
        self.assertTrue(lines[3].startswith("1) [B]("))
        self.assertTrue(lines[4].startswith("2) [C]("))
        self.assertNotIn("[D]", embed.description)
        self.assertTrue(embed.footer.text.startswith("…and 1 more"))

    async def test_queue_marks_paused(self):
        await self.play("A")
        await self.run_cmd("pause")
        session = self.registry.get(1)
        embed = Embedder.queue_listing(session.now_playing, session.upcoming(), paused=session.paused)
        self.assertIn("**Now (paused):**", embed.description)
        self.assertIn("0 tracks queued", embed.footer.text)

    async def test_queue_without_session(self):
        ctx = await self.run_cmd("queue")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Queue Empty")
        self.assertTrue(ephemeral)

    async def test_now(self):
        await self.play("A")
        ctx = await self.run_cmd("now")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "\U0001f3a7 Now Playing")
        self.assertIn("[A]", embed.description)

    async def test_now_without_session(self):
        ctx = await self.run_cmd("now")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Nothing Playing")
        self.assertTrue(ephemeral)


class TestControls(DispatcherTestCase):
    async def test_skip(self):
        await self.play("A")
        await self.play("B")
        ctx = await self.run_cmd("skip")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "✅ Skipped")
        self.assertIn("**A**", embed.description)

        await self.players[0].finish()
        self.assertEqual(self.registry.get(1).now_playing.title, "B")

    async def test_skip_without_session(self):
        ctx = await self.run_cmd("skip")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Nothing Playing")
        self.assertTrue(ephemeral)

    async def test_pause_resume(self):
        await self.play("A")
        ctx = await self.run_cmd("pause")
        self.assertEqual(self.only_reply(ctx)[0].title, "ℹ️ Paused")
        ctx = await self.run_cmd("pause")
        self.assertEqual(self.only_reply(ctx)[0].title, "⚠️ Not Possible")
        ctx = await self.run_cmd("resume")
        self.assertEqual(self.only_reply(ctx)[0].title, "✅ Resumed")
        ctx = await self.run_cmd("resume")
        self.assertEqual(self.only_reply(ctx)[0].title, "⚠️ Not Possible")

    async def test_pause_while_connecting_is_rejected(self):
        gate = asyncio.Event()
        self.transport.gate = gate
        first = asyncio.create_task(self.play("A"))
        await settle()

        ctx = await self.run_cmd("pause")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "⚠️ Not Possible")
        self.assertTrue(ephemeral)

        gate.set()
        await first

    async def test_stop(self):
        await self.play("A")
        await self.play("B")
        ctx = await self.run_cmd("stop")
        self.assertEqual(self.only_reply(ctx)[0].title, "ℹ️ Stopped")
        self.assertNotIn(1, self.registry)
        self.assertTrue(self.transport.connections[0].destroyed)

        ctx = await self.run_cmd("stop")
        self.assertEqual(self.only_reply(ctx)[0].title, "⚠️ Nothing Playing")

    async def test_stop_while_connecting_fails_the_pending_play(self):
        gate = asyncio.Event()
        self.transport.gate = gate
        first = asyncio.create_task(self.play("A"))
        await settle()

        ctx = await self.run_cmd("stop")
        self.assertEqual(self.only_reply(ctx)[0].title, "ℹ️ Stopped")

        gate.set()
        first_ctx = await first
        embed, ephemeral = self.only_reply(first_ctx)
        self.assertEqual(embed.title, "⚠️ Nothing Playing")
        self.assertIn("stopped before", embed.description)
        self.assertTrue(ephemeral)
        self.assertNotIn(1, self.registry)
        self.assertEqual(self.players[0].played, [])


class TestFailureHandling(DispatcherTestCase):
    async def test_unexpected_error_gets_generic_reply(self):
        self.resolver.error = RuntimeError("boom")
        ctx = await self.play("A")
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ Something went wrong")
        self.assertTrue(ephemeral)
        self.assertNotIn("boom", embed.description)

    async def test_reply_failure_is_swallowed(self):
        ctx = FakeContext("queue")
        ctx.reply_error = RuntimeError("interaction expired")
        await self.dispatcher.dispatch(ctx)
        self.assertEqual(ctx.replies, [])

    async def test_outside_guild(self):
        ctx = await self.run_cmd("queue", guild_id=None)
        embed, ephemeral = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ Server Only")
        self.assertTrue(ephemeral)

    async def test_unknown_command(self):
        ctx = await self.run_cmd("shuffle")
        embed, _ = self.only_reply(ctx)
        self.assertEqual(embed.title, "❌ Something went wrong")
        self.assertIn("/shuffle", embed.description)

    async def test_every_command_replies_once(self):
        for name in CommandDispatcher.COMMANDS:
            with self.subTest(command=name):
                ctx = await self.run_cmd(name)
                self.assertEqual(len(ctx.replies), 1)


if __name__ == "__main__":
    unittest.main()

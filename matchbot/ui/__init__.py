"""
UI Module - Discord UI Components

Embeds, persistent button views and the discord.py implementation of the
MatchGateway interface.

Available components:
- actions: custom_id encoding/decoding for every button the bot posts
- embeds: pure renderers from board/match data to discord.Embed
- views: persistent views for the queue panel, ready-check, veto, votes and review
- DiscordGateway: channel, thread, voice room and message management
"""

"""Discord integration for reactroles.

``adapter`` implements the core's ChatPlatform on top of a discord.py client;
``bot`` owns the gateway connection, forwards events to the manager and
exposes the admin slash commands.

Optional: if DISCORD_BOT_TOKEN is not set, the app runs without Discord.
"""

"""Discord side of issuebot.

The bot runs in-process with FastAPI, sharing the same event loop. It keeps
one summary message per tracked label in each guild's issues channel and
edits it in place on every refresh.

Optional: if DISCORD_TOKEN is not set, the app runs without Discord.
"""

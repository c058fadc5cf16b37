"""
News bot - Vercel Serverless Function

Serves the same endpoints as the local server over the ASGI `app` object.
Deploy to Vercel and set the slash command URL to: https://your-app.vercel.app/receive
"""

from config import Settings, configure_logging
from slack_app import build_bot, create_app

configure_logging()

# Vercel entry point
app = create_app(build_bot(Settings.from_env()))

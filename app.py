"""
News bot - local server.

Runs the Starlette app with uvicorn. Point the Slack slash command at
http://<host>/receive and the interactivity Request URL at
http://<host>/receive/help.
"""

import uvicorn

from config import Settings, configure_logging
from slack_app import build_bot, create_app


def main():
    configure_logging()
    settings = Settings.from_env()
    app = create_app(build_bot(settings))

    print(f"Starting News bot on {settings.host}:{settings.port}...")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()

"""
News bot - answers the /news slash command with top stories from a news source.

Slack wants an answer within 3 seconds, so every request is acknowledged
right away with an empty 200 and the real work (fetching stories, building
blocks, posting them back) runs in a background task that replies through
the request's response_url.
"""

import hmac
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from slack_bolt.context.respond import Respond
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from config import Settings
from news import Article, InvalidSection, NewsSource, NYTimes

logger = logging.getLogger(__name__)

STORIES_PREFIX = "stories"
DEFAULT_SECTION = "home"

# Sections offered in the interactive help menu
HELP_SECTIONS = ("home", "arts", "politics")
SECTION_SELECT_ACTION_ID = "section_select"

TOP_STORIES_HEADER = "Here are the top stories 🗞"
HELP_HEADER = "How to use"

INVALID_SECTION_MESSAGE = (
    "⚠️ That's not a valid news section! "
    "Try requesting `/news help` to learn how to use this app!"
)
UPSTREAM_ERROR_MESSAGE = "⚠️ Oops, something went wrong on our side. Try again later!"


# ----- Errors -----


class RequestError(Exception):
    """An inbound request we refuse before acknowledging it."""

    status_code = 400


class AuthError(RequestError):
    status_code = 401


class ValidationError(RequestError):
    status_code = 400


class MalformedRequest(RequestError):
    status_code = 500


class DeliveryError(Exception):
    """Slack did not accept a message posted to a response_url."""


# ----- Commands -----


class CommandKind(Enum):
    TOP_STORIES = "top_stories"
    HELP = "help"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    section: Optional[str] = None


def parse_command(text: str) -> Command:
    """Route the command text: `stories [section]` or anything else for help.

    This is a plain prefix match, so "storiesarts" asks for "arts" too.
    """
    if text.startswith(STORIES_PREFIX):
        section = text[len(STORIES_PREFIX):].strip()
        return Command(CommandKind.TOP_STORIES, section or DEFAULT_SECTION)
    return Command(CommandKind.HELP)


def verify_token(presented: Optional[str], expected: str) -> bool:
    """Check the verification token Slack sends with every request."""
    if not expected or not isinstance(presented, str) or not presented:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


# ----- Block Kit -----


def format_top_stories_blocks(articles: List[Article]) -> list:
    """Header, then one section + divider per article."""
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": TOP_STORIES_HEADER},
        }
    ]
    for article in articles:
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"<{article.url}|{article.title}>\n{article.abstract}",
            },
        })
        blocks.append({"type": "divider"})
    return blocks


def format_help_blocks(news_source: NewsSource) -> list:
    """Interactive help view with a menu of news sections to pick from."""
    options = [
        {
            "text": {
                "type": "plain_text",
                "text": news_source.user_friendly_section(section) or section,
            },
            "value": section,
        }
        for section in HELP_SECTIONS
    ]
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": HELP_HEADER},
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": "Choose a news section"},
            "accessory": {
                "type": "static_select",
                "action_id": SECTION_SELECT_ACTION_ID,
                "placeholder": {"type": "plain_text", "text": "Select a section"},
                "options": options,
            },
        },
    ]


# ----- Delivery -----


class SlackResponder:
    """Posts ephemeral replies to a Slack response_url."""

    def send(self, response_url: str, text: str, blocks: Optional[list] = None) -> None:
        respond = Respond(response_url=response_url)
        response = respond(text=text, blocks=blocks, response_type="ephemeral")
        if response.status_code != 200:
            raise DeliveryError(f"Slack returned {response.status_code}: {response.body}")


# ----- Bot -----


class NewsBot:
    """Turns parsed commands into Slack replies.

    The news source and responder are handed in at construction and never
    replaced; each background task only reads them.
    """

    def __init__(
        self,
        news_source: NewsSource,
        verification_token: str,
        responder: Optional[SlackResponder] = None,
        command: str = "/news",
        top_n: int = 3,
    ):
        self.news_source = news_source
        self.verification_token = verification_token
        self.responder = responder or SlackResponder()
        self.command = command
        self.top_n = top_n

    def process_command(self, channel_id: str, response_url: str, text: str) -> None:
        command = parse_command(text)
        if command.kind is CommandKind.TOP_STORIES:
            self.handle_top_request(channel_id, response_url, command.section)
        else:
            self.handle_help_request(channel_id, response_url)

    def handle_top_request(self, channel_id: str, response_url: str, section: str) -> None:
        """Fetch the top stories for a section and post them back."""
        try:
            articles = self.news_source.top_stories(section, self.top_n)
        except InvalidSection:
            logger.warning(f"Invalid news section requested: {section!r}")
            self._deliver(channel_id, response_url, INVALID_SECTION_MESSAGE)
            return
        except Exception:
            logger.exception(f"Failed to fetch top stories for section {section!r}")
            self._deliver(channel_id, response_url, UPSTREAM_ERROR_MESSAGE)
            return

        blocks = format_top_stories_blocks(articles)
        self._deliver(channel_id, response_url, TOP_STORIES_HEADER, blocks)

    def handle_help_request(self, channel_id: str, response_url: str) -> None:
        blocks = format_help_blocks(self.news_source)
        self._deliver(channel_id, response_url, HELP_HEADER, blocks)

    def _deliver(
        self, channel_id: str, response_url: str, text: str, blocks: Optional[list] = None
    ) -> None:
        # Nothing else to tell the user if this fails: the reply channel is what broke.
        try:
            self.responder.send(response_url, text, blocks)
        except DeliveryError as exc:
            logger.error(f"Error sending message to channel {channel_id}: {exc}")
        except Exception:
            logger.exception(f"Error sending message to channel {channel_id}")
        else:
            logger.info(f"Sent reply to channel {channel_id}")


# ----- Inbound requests -----


@dataclass(frozen=True)
class SlashCommand:
    token: str
    command: str
    channel_id: str
    response_url: str
    text: str


@dataclass(frozen=True)
class SectionSelection:
    channel_id: str
    response_url: str
    section: str


async def parse_slash_command(request: Request) -> SlashCommand:
    """Read the form-encoded slash command body."""
    try:
        form = await request.form()
    except Exception as exc:
        raise MalformedRequest(f"could not parse slash command: {exc}") from exc

    fields = {}
    for name in ("token", "command", "channel_id", "response_url", "text"):
        value = form.get(name) or ""
        if not isinstance(value, str):
            raise MalformedRequest(f"slash command field {name!r} is not text")
        fields[name] = value
    return SlashCommand(**fields)


async def parse_interaction(request: Request) -> dict:
    """Interactions come as JSON inside the form's `payload` field."""
    try:
        form = await request.form()
        interaction = json.loads(form.get("payload") or "")
    except Exception as exc:
        raise ValidationError(f"could not parse interaction payload: {exc}") from exc

    if not isinstance(interaction, dict):
        raise ValidationError("interaction payload is not an object")
    return interaction


def section_selection(interaction: dict) -> SectionSelection:
    """Pull the chosen section out of a block_actions payload."""
    actions = interaction.get("actions") or []
    if not isinstance(actions, list):
        raise ValidationError("interaction actions is not a list")
    if len(actions) != 1:
        raise ValidationError(f"expected exactly one action, got {len(actions)}")

    action = actions[0] if isinstance(actions[0], dict) else {}
    selected = action.get("selected_option")
    section = selected.get("value") if isinstance(selected, dict) else None
    response_url = interaction.get("response_url")
    if not isinstance(section, str) or not section:
        raise ValidationError("interaction is missing a selected option")
    if not isinstance(response_url, str) or not response_url:
        raise ValidationError("interaction is missing a response_url")

    container = interaction.get("container")
    channel = interaction.get("channel")
    if container is not None and not isinstance(container, dict):
        raise ValidationError("interaction container is not an object")
    if channel is not None and not isinstance(channel, dict):
        raise ValidationError("interaction channel is not an object")

    channel_id = (container or {}).get("channel_id") or (channel or {}).get("id") or ""
    if not isinstance(channel_id, str):
        raise ValidationError("interaction channel id is not a string")
    return SectionSelection(channel_id=channel_id, response_url=response_url, section=section)


def create_app(bot: NewsBot) -> Starlette:
    """Starlette app exposing the slash command and help interaction endpoints."""

    async def index(request: Request):
        return PlainTextResponse("Hello world!")

    async def receive(request: Request):
        try:
            slash = await parse_slash_command(request)
            if not verify_token(slash.token, bot.verification_token):
                raise AuthError("invalid token")
            if slash.command != bot.command:
                raise ValidationError(f"unexpected slash command: {slash.command!r}")
        except RequestError as exc:
            logger.warning(f"Rejected slash command: {exc}")
            return Response(status_code=exc.status_code)

        # The request is gone once we return, so the task only gets plain values.
        task = BackgroundTask(
            bot.process_command, slash.channel_id, slash.response_url, slash.text.lower()
        )
        return Response(status_code=200, background=task)

    async def receive_help(request: Request):
        try:
            interaction = await parse_interaction(request)
            if not verify_token(interaction.get("token"), bot.verification_token):
                raise AuthError("invalid token")
            selection = section_selection(interaction)
        except RequestError as exc:
            logger.warning(f"Rejected help interaction: {exc}")
            return Response(status_code=exc.status_code)

        task = BackgroundTask(
            bot.handle_top_request, selection.channel_id, selection.response_url, selection.section
        )
        return Response(status_code=200, background=task)

    return Starlette(
        routes=[
            Route("/", endpoint=index, methods=["GET"]),
            Route("/receive", endpoint=receive, methods=["POST"]),
            Route("/receive/help", endpoint=receive_help, methods=["POST"]),
        ]
    )


def build_bot(settings: Settings) -> NewsBot:
    """Wire the NYT client and Slack responder from settings."""
    return NewsBot(
        news_source=NYTimes(settings.nyt_api_key, timeout=settings.fetch_timeout),
        verification_token=settings.slack_verification_token,
        command=settings.slack_command,
        top_n=settings.top_n,
    )

"""VibeChat entry point: a line-oriented terminal shell over the core."""

import asyncio
import logging
import sys

from vibechat.app import VibeChat
from vibechat.config import settings
from vibechat.errors import VibeChatError

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)

HELP = """Commands:
  /capture          take a screenshot now
  /captures         list stored screenshots
  /new              start a new conversation
  /persona <id>     switch personality (starts a new conversation)
  /personas         list personalities
  /quit             exit
Anything else is sent as a chat message."""


async def _print_delta(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def run_shell(app: VibeChat) -> None:
    """Read commands from stdin until EOF or ``/quit``."""
    personality_id = settings.default_personality
    conversation_id: str | None = None
    print(HELP)

    while True:
        try:
            line = await asyncio.to_thread(input, f"[{personality_id}]> ")
        except EOFError:
            break
        line = line.strip()
        if not line:
            continue

        if line == "/quit":
            break
        if line == "/new":
            conversation_id = None
            print("Started a new conversation.")
        elif line == "/capture":
            response = await app.capture_now()
            print(response.data["image_path"] if response.success else f"Error: {response.error}")
        elif line == "/captures":
            response = await app.list_captures()
            if not response.success:
                print(f"Error: {response.error}")
            for c in response.data["captures"] if response.data else []:
                print(f"  {c['timestamp_iso']}  {c['name']}  {c['size']} bytes")
        elif line == "/personas":
            for p in await app.memory.list_personalities():
                print(f"  {p.id:<10} {p.name} - {p.description}")
        elif line.startswith("/persona "):
            personality_id = line.split(maxsplit=1)[1]
            conversation_id = None
        else:
            response = await app.send_message(
                conversation_id, personality_id, line, on_text_delta=_print_delta
            )
            print()
            if response.data:
                conversation_id = response.data["conversation"]["id"]
            if not response.success:
                print(f"Error: {response.error}")


async def _amain() -> int:
    app = VibeChat.from_settings(settings)
    try:
        await app.start()
    except VibeChatError as exc:
        logger.error("Cannot start: %s", exc)
        await app.stop()
        return 1
    try:
        await run_shell(app)
    finally:
        await app.stop()
    return 0


def main() -> None:
    """Start VibeChat in the terminal."""
    sys.exit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()

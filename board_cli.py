#!/usr/bin/env python3
"""
Interactive terminal queue board.

Shows the three lanes of one clinic and drives the drag controller with
typed commands, against the backend at QUEUE_API_BASE_URL (start
mock_api.py for a local one).

Usage:
    python board_cli.py
"""
import asyncio
import shlex
import sys

from pydantic import ValidationError

from queueboard import config
from queueboard.drag import DragProtocolError, DropOutcome
from queueboard.gateway import SyncError
from queueboard.http_gateway import HttpSyncGateway
from queueboard.logging_config import setup_structured_logging
from queueboard.models import CheckInRequest, Lane
from queueboard.session import BoardSession
from queueboard.store import QueueError

HELP = """
Commands:
  show                          - Redraw the board
  grab <lane> <index>           - Pick up a card
  drop <lane> <index>           - Release it (index counted without the card)
  drop                          - Release outside the board (cancels)
  cancel                        - Abort the current drag
  move <id> <lane> <index>      - Grab and drop by record id
  checkin <name> [service] [staff] [HH:MM]
  wait <id>                     - Predicted wait for a waiting patient
  archive <id>                  - Remove a completed visit
  help | quit
Lanes: waiting, in_service, completed
"""

OUTCOME_MESSAGES = {
    DropOutcome.MOVED: "Moved.",
    DropOutcome.NO_CHANGE: "Dropped in place, nothing to do.",
    DropOutcome.CANCELLED: "Drag cancelled.",
    DropOutcome.REVERTED: "Move refused, board refreshing from server.",
}


def print_board(session: BoardSession):
    print()
    print(session.render(color=sys.stdout.isatty()))
    print()
    session.notifications.clear()


async def handle(session: BoardSession, words: list) -> bool:
    """Run one command. Returns False when the user wants to leave."""
    command, args = words[0].lower(), words[1:]
    controller = session.controller

    if command in ("quit", "exit"):
        return False
    elif command == "help":
        print(HELP)
    elif command == "show":
        print_board(session)
    elif command == "grab":
        record = controller.grab(Lane(args[0]), int(args[1]))
        print(f"Holding {record.patient_name} [{record.id}]")
    elif command == "drop":
        if args:
            outcome = controller.drop(Lane(args[0]), int(args[1]))
        else:
            outcome = controller.drop(None, None)
        print(OUTCOME_MESSAGES[outcome])
        print_board(session)
    elif command == "cancel":
        controller.cancel()
        print(OUTCOME_MESSAGES[DropOutcome.CANCELLED])
    elif command == "move":
        outcome = controller.move(args[0], Lane(args[1]), int(args[2]))
        print(OUTCOME_MESSAGES[outcome])
        print_board(session)
    elif command == "checkin":
        fields = dict(zip(("patient_name", "service_label", "assigned_staff", "scheduled_time"), args))
        record = await session.check_in(CheckInRequest(**fields))
        print(f"Checked in {record.patient_name} as [{record.id}]")
    elif command == "wait":
        estimate = session.predicted_wait(args[0])
        if estimate["position"] is None:
            print("Not waiting.")
        else:
            print(
                f"Position {estimate['position']}, {estimate['patients_ahead']} ahead, "
                f"about {estimate['estimated_wait_minutes']} min "
                f"(~{estimate['estimated_time'].astimezone().strftime('%H:%M')})"
            )
    elif command == "archive":
        await session.archive(args[0])
        print("Archived.")
    else:
        print(f"Unknown command: {command}. Type help.")
    return True


async def main():
    """Run the interactive board."""
    setup_structured_logging(log_level="WARNING", stream=sys.stderr)

    gateway = HttpSyncGateway()
    session = BoardSession(gateway)

    print(f"Connecting to {config.QUEUE_API_BASE_URL} (clinic {config.CLINIC_ID})...")
    try:
        await session.start()
    except SyncError as e:
        print(f"Could not load the board: {e}")
        await gateway.close()
        sys.exit(1)

    print(HELP)
    print_board(session)

    running = True
    while running:
        try:
            line = await asyncio.to_thread(input, "board> ")
        except (EOFError, KeyboardInterrupt):
            break

        try:
            words = shlex.split(line)
        except ValueError as e:
            print(f"Could not parse command: {e}")
            continue
        if not words:
            continue

        try:
            running = await handle(session, words)
        except (IndexError, ValueError) as e:
            # ValidationError is a ValueError
            detail = e.errors()[0]["msg"] if isinstance(e, ValidationError) else e
            print(f"Bad arguments: {detail or 'missing argument'}. Type help.")
        except (QueueError, DragProtocolError, SyncError) as e:
            print(f"Error: {e}")

    await session.close()
    await gateway.close()
    print("Goodbye.")


if __name__ == "__main__":
    asyncio.run(main())

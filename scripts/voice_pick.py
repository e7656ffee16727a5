#!/usr/bin/env python3
"""
Voice Pick — pick one order hands-free on this machine.

Listens on the default microphone and speaks through the system voice
(install the `speech` extra). The gateway backend and voice engine come from
config/settings.yaml or VOICEPICK_CONFIG.

Usage:
    python scripts/voice_pick.py --order 1
    python scripts/voice_pick.py --order 1 --worker 2 --language ja
    python scripts/voice_pick.py --order 1 --debug
"""
import argparse
import asyncio
import logging
import os
import sys

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def main():
    parser = argparse.ArgumentParser(description="Hands-free voice picking for one order")
    parser.add_argument("--order", required=True, help="Order id to pick")
    parser.add_argument("--worker", default=None, help="Worker id (default: settings worker_id)")
    parser.add_argument("--language", default=None, help="Session language, e.g. en or ja")
    parser.add_argument("--debug", action="store_true", help="Log state transitions")
    args = parser.parse_args()

    from dotenv import load_dotenv
    load_dotenv()

    import structlog
    from config.settings import load_settings
    from core.errors import PickingError
    from core.orchestrator import run_voice_session

    settings = load_settings()
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if args.debug or settings.debug else logging.INFO
        ),
    )

    try:
        machine = asyncio.run(run_voice_session(
            settings, args.order, worker_id=args.worker, language=args.language,
        ))
    except KeyboardInterrupt:
        print("\nStopped. Items already confirmed stay picked.")
        sys.exit(130)
    except PickingError as e:
        print(f"Could not run the session: {e}", file=sys.stderr)
        sys.exit(1)

    session = machine.session
    state = "completed" if machine.is_completed else "not completed"
    print(f"Order {args.order}: {session.picked_items}/{session.total_items} items picked ({state})")
    sys.exit(0 if machine.is_completed else 2)


if __name__ == "__main__":
    main()

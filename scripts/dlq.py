#!/usr/bin/env python3
"""
Inspect and replay dead-lettered messages.

Usage:
    python scripts/dlq.py list [queue]
    python scripts/dlq.py show <message_id>
    python scripts/dlq.py remove <message_id>
    python scripts/dlq.py requeue <message_id>
"""

import json
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from mediaflow.config.settings import get_settings  # noqa: E402
from mediaflow.queue import create_queue  # noqa: E402
from mediaflow.queue.dlq import DeadLetterQueue  # noqa: E402


def main(argv) -> int:
    if not argv:
        print(__doc__)
        return 1

    settings = get_settings()
    dlq = DeadLetterQueue(settings.dlq_path)
    command, args = argv[0], argv[1:]

    if command == "list":
        for entry in dlq.list(queue=args[0] if args else None):
            print(f"{entry['message_id']}  {entry['queue']}  "
                  f"deliveries={entry['receive_count']}  {entry['error']}")
        return 0

    if not args:
        print(f"{command} needs a message id", file=sys.stderr)
        return 1
    entry = dlq.get(args[0])
    if entry is None:
        print(f"Message {args[0]} not in the DLQ", file=sys.stderr)
        return 1

    if command == "show":
        print(json.dumps(entry, indent=2))
    elif command == "remove":
        dlq.remove(args[0])
        print(f"Removed {args[0]}")
    elif command == "requeue":
        # In-process queues live inside the host process and cannot be reached from here
        if settings.queue_backend == "inproc":
            print("requeue needs the redis or sqs queue backend", file=sys.stderr)
            return 1
        new_id = create_queue(entry["queue"], settings).send(entry["body"])
        dlq.remove(args[0])
        print(f"Requeued {args[0]} on {entry['queue']} as {new_id}")
    else:
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))

"""Entry point: python -m groupcron"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone

from groupcron.groups.repository import RegisteredGroup
from groupcron.infrastructure.database import database
from groupcron.infrastructure.logger import install_exception_hooks, logger
from groupcron.scheduling.task_service import TaskManager


async def main() -> None:
    from groupcron.app import Orchestrator

    orchestrator = Orchestrator()

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await orchestrator.start()
        await shutdown_event.wait()
    finally:
        await orchestrator.shutdown()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="groupcron", description="Scheduled agent tasks for chat groups")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the scheduler (default)")

    reg = sub.add_parser("register-group", help="Register a chat group")
    reg.add_argument("jid")
    reg.add_argument("folder")
    reg.add_argument("--name")
    reg.add_argument("--trigger", default="")

    add = sub.add_parser("add-task", help="Schedule a task")
    add.add_argument("folder")
    add.add_argument("jid")
    add.add_argument("schedule_type", choices=["cron", "interval", "once"])
    add.add_argument("schedule_value", help="cron expression, interval in ms, or ISO timestamp")
    add.add_argument("prompt")
    add.add_argument("--context-mode", choices=["group", "isolated"], default="isolated")

    ls = sub.add_parser("list-tasks", help="List tasks")
    ls.add_argument("--group")

    for name in ("pause-task", "resume-task", "cancel-task"):
        cmd = sub.add_parser(name)
        cmd.add_argument("task_id")

    return parser


def _run_admin(args: argparse.Namespace) -> int:
    from groupcron.app import Orchestrator

    database.init()
    tasks = TaskManager(database.task_repo)

    if args.command == "register-group":
        group = RegisteredGroup(
            name=args.name or args.folder,
            folder=args.folder,
            trigger=args.trigger,
            added_at=datetime.now(timezone.utc).isoformat(),
        )
        Orchestrator(db=database).register_group(args.jid, group)
        print(f"Registered {args.jid} -> {args.folder}")
    elif args.command == "add-task":
        task = tasks.create(
            args.folder, args.jid, args.prompt, args.schedule_type, args.schedule_value, args.context_mode
        )
        print(task.id)
    elif args.command == "list-tasks":
        for t in tasks.list_tasks(args.group):
            print(f"{t.id}\t{t.group_folder}\t{t.status}\t{t.schedule_type}:{t.schedule_value}\tnext={t.next_run}")
    elif args.command == "pause-task":
        tasks.pause(args.task_id)
    elif args.command == "resume-task":
        tasks.resume(args.task_id)
    elif args.command == "cancel-task":
        tasks.cancel(args.task_id)
    return 0


def run() -> None:
    install_exception_hooks()
    args = _build_parser().parse_args()

    if args.command in (None, "run"):
        try:
            asyncio.run(main())
        except KeyboardInterrupt:
            pass
        return

    try:
        sys.exit(_run_admin(args))
    except ValueError as err:
        print(f"error: {err}", file=sys.stderr)
        sys.exit(2)
    finally:
        database.close()


if __name__ == "__main__":
    run()

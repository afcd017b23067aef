from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from agentd.config import ConfigError, DaemonConfig
from agentd.engine.eval import EvalEngine
from agentd.errors import AgentdError
from agentd.logs import log_conversation, setup_logging
from agentd.runtime.context import RuntimeContext, build_context
from agentd.runtime.signals import install_signal_handlers
from agentd.scheduler.agent_runner import AgentRunner
from agentd.scheduler.scheduler import Scheduler
from agentd.sessions.schema import BtState
from agentd.sessions.store import SessionFilter, parse_session_id

logger = logging.getLogger(__name__)


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _split_labels(values: list[str] | None) -> tuple[str, ...]:
    labels: list[str] = []
    for raw in values or []:
        for part in str(raw).split(","):
            part = part.strip()
            if part and part not in labels:
                labels.append(part)
    return tuple(labels)


def _add_filter_args(parser: argparse.ArgumentParser, with_session: bool = True) -> None:
    if with_session:
        parser.add_argument("--session", default=None, help="Only this session id")
    parser.add_argument("--labels", action="append", help="Require all of these labels (comma separated)")
    parser.add_argument("--not-labels", action="append", help="Exclude sessions with any of these labels")


def _filter_from_args(args) -> SessionFilter:
    session = getattr(args, "session", None)
    return SessionFilter(
        session_id=parse_session_id(session) if session is not None else None,
        labels=_split_labels(args.labels),
        not_labels=_split_labels(args.not_labels),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentd", description="agentd - multi-agent session orchestrator")
    parser.add_argument("--root", default=None, help="Workspace directory holding agents/ (default: $AGENTD_ROOT or .)")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("-q", "--quiet", action="store_true")
    parser.add_argument("--log-format", default="text", choices=["text", "json"])
    parser.add_argument("--no-humans", action="store_true", help="Auto-reject tool calls that need approval")
    parser.add_argument("--observe", type=int, default=None, metavar="PORT", help="Send telemetry to a local UDP port")
    parser.add_argument("--max-workers", type=int, default=None, help="Sessions evaluated in parallel per pump")
    subparsers = parser.add_subparsers(dest="command", required=True)

    new = subparsers.add_parser("new", help="Create a session from a template")
    new.add_argument("template")
    new.add_argument("prompt", nargs="*")
    new.add_argument("--labels", action="append")

    fork = subparsers.add_parser("fork", help="Fork a session id or a template")
    fork.add_argument("source")
    fork.add_argument("prompt", nargs="*")
    fork.add_argument("--labels", action="append")

    push = subparsers.add_parser("push", help="Append a user message to a session")
    push.add_argument("session_id")
    push.add_argument("prompt", nargs="+")

    ev = subparsers.add_parser("eval", help="Run one evaluation step on a session")
    ev.add_argument("session_id")

    pump = subparsers.add_parser("pump", help="Evaluate every pending session once")
    _add_filter_args(pump)

    watch = subparsers.add_parser("watch", help="Pump on a fixed interval until interrupted")
    watch.add_argument("-c", "--interval", type=float, default=None, help="Seconds between iterations")
    _add_filter_args(watch)

    agent = subparsers.add_parser("agent", help="Run @template with a prompt to completion")
    agent.add_argument("template", help="@template")
    agent.add_argument("prompt", nargs="*")
    agent.add_argument("--timeout", type=float, default=None, help="Seconds before the run is aborted")
    agent.add_argument("--lock", action="store_true", help="Fail if this template is already running")
    agent.add_argument("--kill", action="store_true", help="Kill running sessions of this template first")
    agent.add_argument("-i", "--interactive", action="store_true", help="Read the prompt from the terminal")

    sessions = subparsers.add_parser("sessions", help="List sessions")
    _add_filter_args(sessions, with_session=False)
    sessions.add_argument("--state", action="append", choices=[s.value for s in BtState])

    kill = subparsers.add_parser("kill", help="Force a session to fail")
    kill.add_argument("session_id")

    logs = subparsers.add_parser("logs", help="Replay a session's conversation to the log")
    logs.add_argument("session_id")
    logs.add_argument("--unread", action="store_true", help="Only messages after lastRead")

    subparsers.add_parser("templates", help="List agent templates")

    return parser


def _load_config(args) -> DaemonConfig:
    config = DaemonConfig.load(args.root)
    if args.observe is not None:
        config.observe_port = args.observe
    if args.max_workers is not None:
        config.max_workers = args.max_workers
    config.validate()
    return config


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_format=args.log_format)

    handler = COMMANDS[args.command]
    try:
        config = _load_config(args)
        context = build_context(config, no_humans=args.no_humans)
        signals = install_signal_handlers(context) if args.command in LONG_RUNNING else None
        try:
            return handler(args, context)
        finally:
            if signals is not None:
                signals.restore()
    except (AgentdError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Unhandled error", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _cmd_new(args, context: RuntimeContext) -> int:
    prompt = " ".join(args.prompt).strip() or None
    source = args.template if args.command == "new" else args.source
    session_id = context.store.create(source, prompt, labels=_split_labels(args.labels))
    _print_json({"session_id": session_id, "state": context.store.get_state(session_id).value})
    return 0


def _cmd_push(args, context: RuntimeContext) -> int:
    _print_json(context.store.push(args.session_id, " ".join(args.prompt)))
    return 0


def _cmd_eval(args, context: RuntimeContext) -> int:
    result = EvalEngine(context).eval(args.session_id)
    _print_json(result.to_dict())
    return 0


def _cmd_pump(args, context: RuntimeContext) -> int:
    result = Scheduler(context).pump(_filter_from_args(args))
    _print_json(result.to_dict())
    return 0


def _cmd_watch(args, context: RuntimeContext) -> int:
    iterations = Scheduler(context).watch(_filter_from_args(args), interval=args.interval)
    _print_json({"iterations": iterations})
    return 0


def _cmd_agent(args, context: RuntimeContext) -> int:
    if not args.template.startswith("@"):
        print("Error: agent requires @<agent> <prompt> format", file=sys.stderr)
        return 1

    prompt = " ".join(args.prompt).strip()
    if args.interactive and not prompt:
        prompt = input("> ").strip()
    if not prompt:
        print("Error: No prompt provided", file=sys.stderr)
        return 1

    result = AgentRunner(context).run(
        args.template,
        prompt,
        timeout=args.timeout,
        lock=args.lock,
        kill=args.kill,
    )
    _print_json(result.to_dict())
    return 0 if result.state == BtState.SUCCESS else 1


def _cmd_sessions(args, context: RuntimeContext) -> int:
    flt = _filter_from_args(args)
    if args.state:
        flt = SessionFilter(
            labels=flt.labels,
            not_labels=flt.not_labels,
            states=tuple(BtState.parse(s) for s in args.state),
        )
    _print_json([session.summary() for session in context.store.list(flt)])
    return 0


def _cmd_logs(args, context: RuntimeContext) -> int:
    session = context.store.load(args.session_id)
    since = session.last_read if args.unread else None
    logger.info(f"Session {session.id} ({session.template}) conversation")
    shown = log_conversation(session.id, session.messages, since)
    if not session.messages:
        logger.info("No messages in this session yet.")
    _print_json({"session_id": session.id, "agent": session.template, "state": session.state.value, "messages": shown})
    return 0


def _cmd_kill(args, context: RuntimeContext) -> int:
    state = context.store.kill(args.session_id)
    _print_json({"session_id": parse_session_id(args.session_id), "state": state.value})
    return 0


def _cmd_templates(args, context: RuntimeContext) -> int:
    rows = [
        {
            "name": t.name,
            "description": t.description,
            "model": t.model,
            "tools": list(t.tools),
            "labels": list(t.labels),
        }
        for t in context.templates.list()
    ]
    _print_json(rows)
    return 0


LONG_RUNNING = {"eval", "pump", "watch", "agent"}

COMMANDS = {
    "new": _cmd_new,
    "fork": _cmd_new,
    "push": _cmd_push,
    "eval": _cmd_eval,
    "pump": _cmd_pump,
    "watch": _cmd_watch,
    "agent": _cmd_agent,
    "sessions": _cmd_sessions,
    "kill": _cmd_kill,
    "logs": _cmd_logs,
    "templates": _cmd_templates,
}


if __name__ == "__main__":
    raise SystemExit(main())

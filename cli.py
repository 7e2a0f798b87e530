#!/usr/bin/env python3
"""
Roadside Dispatch CLI

Purpose
-------
Drive a fleet driver's conversation with the dispatch assistant locally, and
operate the provider side of the work-order negotiation against the same
local store.

Top-level entrypoints
---------------------
- chat --profile PROFILE.json|yaml [--user ID]
- ask  --profile PROFILE.json|yaml --text "MESSAGE" [--json]
- requests list [--user ID] [--status STATUS]
- requests show --id REQUEST_ID
- provider queue --provider ID [--urgency ERS|DELAYED|SCHEDULED|ALL]
- provider jobs --provider ID
- provider accept|reject --id REQUEST_ID --provider ID [--name NAME]
- provider counter --id REQUEST_ID --provider ID --name NAME --date D --time T [--message TEXT]
- provider complete --id REQUEST_ID --provider ID
- fleet proposals --user ID
- fleet approve|decline --proposal PROPOSAL_ID
- fleet cancel --id REQUEST_ID --user ID
- fleet inbox --user ID [--unread] [--mark-read]
- export --id REQUEST_ID

In-session slash commands (after `chat` starts)
-----------------------------------------------
- /help              Show available commands.
- /new               Drop the current service request and start over.
- /name <reply>      Tell the assistant what to call you.
- /show packet       Print the last TurnPacket.
- /show record       Print the current (or last) service request.
- /notifications     Show unread notifications.
- /quit              Exit the chat session.

Negotiation and persistence errors are printed as their user_message and
return exit code 1.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from dispatch_assistant import config
from dispatch_assistant.error_handler import DispatchError, summarize_for_log
from dispatch_assistant.request_state import ServiceRequest
from fleet_agent.controller import FleetChatAgent, ProviderDesk
from fleet_agent.exporter import Exporter
from fleet_agent.local_store import LocalStore

# ---------------- utils ----------------

def _load_profile_file(p: str | Path) -> Dict[str, Any]:
    p = Path(p)
    if p.suffix.lower() in (".yaml", ".yml"):
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    else:
        raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"profile file must hold an object: {p}")
    return raw.get("profile", raw)

def _store(args) -> LocalStore:
    return LocalStore(getattr(args, "store", None) or config.STORE_ROOT)

def _fmt_request_line(r: ServiceRequest) -> str:
    urgency = r.urgency.value if r.urgency else "-"
    kind = r.service_type.value if r.service_type else "-"
    where = r.location.current_location or ""
    return f"{r.id[:12]:12} | {r.status.value:16} | {urgency:9} | {kind:10} | {where[:28]:28} | {r.timestamp}"

def _open_agent(args) -> Optional[FleetChatAgent]:
    raw = _load_profile_file(args.profile)
    user_id = args.user or raw.get("user_id")
    if not user_id:
        print("Profile must include 'user_id' (or pass --user)", file=sys.stderr)
        return None
    agent = FleetChatAgent(_store(args))
    agent.open(user_id, defaults=raw)
    return agent

def _fail(exc: DispatchError) -> int:
    print(exc.error.get("user_message", str(exc)), file=sys.stderr)
    print(f"  ({summarize_for_log(exc.error)})", file=sys.stderr)
    return 1

def _print_chat_help():
    print(
        "Commands:\n"
        "  /help                 Show this help\n"
        "  /new                  Start a new service request\n"
        "  /name <reply>         Tell me what to call you\n"
        "  /show packet|record   Show last TurnPacket or the service request\n"
        "  /notifications        Show unread notifications\n"
        "  /quit                 Exit\n"
    )

# ---------------- chat / ask ----------------

def cmd_chat(args):
    agent = _open_agent(args)
    if agent is None:
        return 2
    name = agent.profile.user_name or "Driver"
    print(f"Hey {name}, dispatch here. Type '/help' for commands. Natural text is fine too.")

    last_packet: Optional[Dict[str, Any]] = None
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print(); break
        if not line:
            continue

        if line.startswith("/"):
            cmd = line[1:].strip().split(" ", 1)
            name = cmd[0].lower()
            arg = cmd[1].strip() if len(cmd) > 1 else ""

            if name == "quit":
                break

            elif name == "help":
                _print_chat_help()
                continue

            elif name == "new":
                agent.coordinator.reset()
                print("(cleared) Tell me what's going on with the truck.")
                continue

            elif name == "name":
                if not arg:
                    print("usage: /name <what to call you>"); continue
                print(f"Got it, I'll call you {agent.set_user_name_from_reply(arg)}.")
                continue

            elif name == "show":
                if arg == "packet":
                    print(json.dumps(last_packet or {"note": "(no packet yet)"}, indent=2, ensure_ascii=False))
                elif arg == "record":
                    rec = agent.coordinator.record or agent.coordinator.last_record
                    print(json.dumps(rec.model_dump(mode="json") if rec else {"note": "(no request yet)"},
                                     indent=2, ensure_ascii=False))
                else:
                    print("usage: /show packet|record")
                continue

            elif name == "notifications":
                notes = agent.notifications(unread_only=True)
                if not notes:
                    print("No new notifications.")
                for n in notes:
                    print(f"[{n.kind.value}] {n.message} ({n.service_request_id[:12]})")
                agent.mark_notifications_read()
                continue

            else:
                print("Unknown command. Type /help for options.")
                continue

        out = agent.handle(line)
        last_packet = out["packet"]
        print(out["reply"])

    return 0

def cmd_ask(args):
    agent = _open_agent(args)
    if agent is None:
        return 2
    out = agent.handle(args.text)
    if args.json:
        print(json.dumps(out, ensure_ascii=False, indent=2))
    else:
        print(out["reply"])
    return 0 if out["packet"].get("ok") else 1

# ---------------- requests ----------------

def cmd_requests_list(args):
    rows = _store(args).list(owner_id=args.user, status=args.status)
    if not rows:
        print("No service requests.")
        return 0
    for r in rows:
        print(_fmt_request_line(r))
    return 0

def cmd_requests_show(args):
    rec = _store(args).get(args.id)
    if rec is None:
        print(f"{args.id}: not found", file=sys.stderr)
        return 2
    print(json.dumps(rec.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0

# ---------------- provider ----------------

def cmd_provider_queue(args):
    rows = ProviderDesk(_store(args)).queue(args.provider, args.urgency)
    if not rows:
        print("Nothing actionable.")
        return 0
    for r in rows:
        print(_fmt_request_line(r))
    return 0

def cmd_provider_jobs(args):
    rows = ProviderDesk(_store(args)).jobs(args.provider)
    if not rows:
        print("No active jobs.")
        return 0
    for r in rows:
        print(_fmt_request_line(r))
    return 0

def cmd_provider_action(args):
    wf = ProviderDesk(_store(args)).workflow
    try:
        if args.sub == "accept":
            rec = wf.accept(args.id, args.provider, args.name or args.provider)
        elif args.sub == "reject":
            rec = wf.reject(args.id, args.provider, args.name or "")
        elif args.sub == "counter":
            rec, prop = wf.counter_propose(args.id, args.provider, args.name, args.date, args.time, args.message or "")
            print(f"proposal {prop.id}")
        else:
            rec = wf.complete(args.id, args.provider)
    except DispatchError as e:
        return _fail(e)
    except ValueError as e:
        print(str(e), file=sys.stderr); return 2
    print(f"{rec.id}: {rec.status.value}")
    return 0

# ---------------- fleet ----------------

def cmd_fleet_proposals(args):
    store = _store(args)
    wf = ProviderDesk(store).workflow
    found = False
    for rec in store.list(owner_id=args.user):
        prop = wf.pending_proposal(rec.id)
        if prop is None:
            continue
        found = True
        print(f"{prop.id} | request {rec.id[:12]} | {prop.provider_name} proposes {prop.proposed_date} at {prop.proposed_time}"
              + (f" | {prop.message}" if prop.message else ""))
    if not found:
        print("No pending proposals.")
    return 0

def cmd_fleet_resolve(args):
    wf = ProviderDesk(_store(args)).workflow
    try:
        if args.sub == "approve":
            rec, prop = wf.approve_counter_proposal(args.proposal)
        else:
            rec, prop = wf.reject_counter_proposal(args.proposal)
    except DispatchError as e:
        return _fail(e)
    print(f"{rec.id}: {rec.status.value} (proposal {prop.status.value})")
    return 0

def cmd_fleet_cancel(args):
    wf = ProviderDesk(_store(args)).workflow
    try:
        rec = wf.cancel(args.id, args.user)
    except DispatchError as e:
        return _fail(e)
    print(f"{rec.id}: {rec.status.value}")
    return 0

def cmd_fleet_inbox(args):
    desk = ProviderDesk(_store(args))
    notes = desk.notifier.list(args.user, unread_only=args.unread)
    if not notes:
        print("Inbox empty.")
    for n in notes:
        flag = "" if n.read else "*"
        print(f"{flag:1} {n.created_at} | {n.kind.value:16} | {n.message}")
    if args.mark_read:
        desk.notifier.mark_read(args.user)
    return 0

# ---------------- export ----------------

def cmd_export(args):
    store = _store(args)
    rec = store.get(args.id)
    if rec is None:
        print(f"{args.id}: not found", file=sys.stderr)
        return 2
    print(Exporter(store.outbox_dir).write_work_order(rec))
    return 0

# ---------------- parser ----------------

def build_parser():
    p = argparse.ArgumentParser(prog="roadside-dispatch")
    p.add_argument("--store", help=f"local store root (default: {config.STORE_ROOT})")
    sub = p.add_subparsers(dest="cmd")

    # chat
    p_chat = sub.add_parser("chat", help="interactive chat as a fleet driver")
    p_chat.add_argument("--profile", required=True, help="path to profile JSON/YAML (must include user_id)")
    p_chat.add_argument("--user", help="override user_id")
    p_chat.set_defaults(func=cmd_chat)

    # ask
    p_ask = sub.add_parser("ask", help="one-shot turn")
    p_ask.add_argument("--profile", required=True)
    p_ask.add_argument("--user")
    p_ask.add_argument("--text", required=True)
    p_ask.add_argument("--json", action="store_true")
    p_ask.set_defaults(func=cmd_ask)

    # requests
    p_req = sub.add_parser("requests", help="service requests in the local store")
    sub_req = p_req.add_subparsers(dest="sub")
    pr_list = sub_req.add_parser("list", help="list service requests")
    pr_list.add_argument("--user", help="owner user_id")
    pr_list.add_argument("--status", help="draft|submitted|accepted|...")
    pr_list.set_defaults(func=cmd_requests_list)
    pr_show = sub_req.add_parser("show", help="print one service request")
    pr_show.add_argument("--id", required=True)
    pr_show.set_defaults(func=cmd_requests_show)

    # provider
    p_prov = sub.add_parser("provider", help="service provider actions")
    sub_prov = p_prov.add_subparsers(dest="sub")
    pp_queue = sub_prov.add_parser("queue", help="actionable requests")
    pp_queue.add_argument("--provider", required=True)
    pp_queue.add_argument("--urgency", choices=["ERS", "DELAYED", "SCHEDULED", "ALL"])
    pp_queue.set_defaults(func=cmd_provider_queue)
    pp_jobs = sub_prov.add_parser("jobs", help="accepted / agreed jobs")
    pp_jobs.add_argument("--provider", required=True)
    pp_jobs.set_defaults(func=cmd_provider_jobs)
    for action in ("accept", "reject", "counter", "complete"):
        pa = sub_prov.add_parser(action, help=f"{action} a request")
        pa.add_argument("--id", required=True)
        pa.add_argument("--provider", required=True)
        if action != "complete":
            pa.add_argument("--name", required=(action == "counter"))
        if action == "counter":
            pa.add_argument("--date", required=True)
            pa.add_argument("--time", required=True)
            pa.add_argument("--message")
        pa.set_defaults(func=cmd_provider_action)

    # fleet
    p_fleet = sub.add_parser("fleet", help="fleet-side negotiation and inbox")
    sub_fleet = p_fleet.add_subparsers(dest="sub")
    pf_props = sub_fleet.add_parser("proposals", help="pending counter-proposals")
    pf_props.add_argument("--user", required=True)
    pf_props.set_defaults(func=cmd_fleet_proposals)
    for action in ("approve", "decline"):
        pf = sub_fleet.add_parser(action, help=f"{action} a counter-proposal")
        pf.add_argument("--proposal", required=True)
        pf.set_defaults(func=cmd_fleet_resolve)
    pf_cancel = sub_fleet.add_parser("cancel", help="cancel a request")
    pf_cancel.add_argument("--id", required=True)
    pf_cancel.add_argument("--user", required=True)
    pf_cancel.set_defaults(func=cmd_fleet_cancel)
    pf_inbox = sub_fleet.add_parser("inbox", help="notifications")
    pf_inbox.add_argument("--user", required=True)
    pf_inbox.add_argument("--unread", action="store_true")
    pf_inbox.add_argument("--mark-read", action="store_true")
    pf_inbox.set_defaults(func=cmd_fleet_inbox)

    # export
    p_exp = sub.add_parser("export", help="write a work-order PDF")
    p_exp.add_argument("--id", required=True)
    p_exp.set_defaults(func=cmd_export)

    return p

def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "cmd", None):
        parser.print_help()
        return 0
    if args.cmd in ("requests", "provider", "fleet") and not getattr(args, "sub", None):
        parser.parse_args([args.cmd, "-h"])
        return 0
    return args.func(args)

if __name__ == "__main__":
    raise SystemExit(main())

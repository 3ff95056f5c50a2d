#!/usr/bin/env python3
"""
codeyaar CLI.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the gateway server
    health          ping, status    Ping a running instance
    tap             tail, log       Tail the wire log
    models          —               Show the model id table
    check           scan            Run the safety filter over some text
"""

import argparse
import sys

from codeyaar import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the gateway server."""
    import uvicorn
    from codeyaar.config import get_config

    cfg = get_config()
    server = cfg.get("server", {})
    host = args.host or server.get("host", "0.0.0.0")
    port = args.port or server.get("port", 8000)

    print(f"  codeyaar {__version__} on {host}:{port}")
    print(f"  Upstream: {cfg.get('upstream', {}).get('url', '<unset>')}")
    print()

    uvicorn.run(
        "codeyaar.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_health(args):
    """Ping a running instance."""
    import httpx

    url = (args.url or "http://localhost:8000").rstrip("/")
    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        print(f"  ✗  {url} not answering: {e}")
        sys.exit(1)

    data = resp.json()
    print(f"  ✓  {url} — {data.get('status')} (v{data.get('version', '?')})")
    if not data.get("upstream_configured", True):
        print("     upstream API key is not configured")


def cmd_tap(args):
    """Tail the wire log."""
    from codeyaar.wiretap import live_tap

    log_path = args.log
    if log_path is None:
        from codeyaar.config import get_config
        log_path = get_config().get("wiretap", {}).get("path", "./data/wire.jsonl")

    live_tap(
        log_path=log_path,
        follow=not args.no_follow,
        last_n=args.last,
        direction=args.dir,
        raw=args.raw,
    )


def _policy():
    from codeyaar.config import get_config
    from codeyaar.policy import build_policy
    return build_policy(get_config())


def cmd_models(args):
    """Print the model id table."""
    policy = _policy()
    width = max((len(k) for k in policy.models), default=10)
    for model_id, provider in policy.models.items():
        print(f"  {model_id:<{width}}  →  {provider}")
    print(f"  {'(other)':<{width}}  →  {policy.default_model}")


def cmd_check(args):
    """Run the safety filter over text from the command line or stdin."""
    from codeyaar.safety import ContentFilter

    text = " ".join(args.text) if args.text else sys.stdin.read()
    verdict = ContentFilter(_policy().unsafe_patterns).evaluate(text)
    if verdict.blocked:
        print(f"  ✗  blocked (pattern: {verdict.matched_pattern})")
        sys.exit(1)
    print("  ✓  allowed")


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name and aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codeyaar",
        description="codeyaar — AI gateway for the Code-Yaar learning platform.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"codeyaar {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"], "Start the gateway server", cmd_serve, setup_serve)

    def setup_health(p):
        p.add_argument("--url", "-u", default=None, help="Gateway URL (default: http://localhost:8000)")

    _add_command(sub, ["health", "ping", "status"], "Ping a running instance", cmd_health, setup_health)

    def setup_tap(p):
        p.add_argument("--log", default=None, help="Path to wire.jsonl (default: from config)")
        p.add_argument("--last", "-n", type=int, default=20, help="Show last N entries before following")
        p.add_argument("--dir", "-d", choices=["inbound", "outbound", "internal"], default=None,
                       help="Only show one direction")
        p.add_argument("--no-follow", action="store_true", help="Don't follow, just show last entries")
        p.add_argument("--raw", action="store_true", help="Raw JSONL output, no formatting")

    _add_command(sub, ["tap", "tail", "log"], "Tail the wire log", cmd_tap, setup_tap)

    _add_command(sub, ["models"], "Show the model id table", cmd_models)

    def setup_check(p):
        p.add_argument("text", nargs="*", help="Text to check (default: read stdin)")

    _add_command(sub, ["check", "scan"], "Run the safety filter over some text", cmd_check, setup_check)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Inbook client -- session and route guard tooling from the command line.

Usage:
  python main.py route /friends-list
  python main.py route /user-login --cookie token=abc
  python main.py login alice@example.com
  python main.py whoami
  python main.py diagnose
  python main.py feed --page 2
  python main.py logout

Each invocation is a fresh "page load": the cookie jar starts empty, so a
session survives between commands only through durable storage
(DURABLE_STORAGE_URL). That is also the quickest way to watch backfill work.

Environment variables:
  BACKEND_URL   Backend base URL. Blank or unset falls back to the fixed default.
"""

import argparse
import asyncio
import getpass
import json
import sys

from auth.guard import evaluate_route, has_credential_cookie
from context import ClientContext
from core.errors import InbookError


def _parse_cookies(pairs: list[str]) -> dict[str, str]:
    cookies = {}
    for pair in pairs:
        name, _, value = pair.partition("=")
        cookies[name.strip()] = value.strip() or "1"
    return cookies


def _cmd_route(args: argparse.Namespace) -> int:
    path, _, query_string = args.path.partition("?")
    query = dict(part.partition("=")[::2] for part in query_string.split("&") if part)
    decision = evaluate_route(path, has_credential_cookie(_parse_cookies(args.cookie)), query)
    if decision.allowed:
        print(f"  allow    {path}  ({decision.reason})")
    else:
        print(f"  redirect {path} -> {decision.location}  ({decision.reason})")
    return 0


async def _cmd_login(ctx: ClientContext, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("  Password: ")
    outcome = await ctx.synchronizer.login(args.email, password, callback_url=args.callback)
    if not outcome.ok:
        print(f"  [!] Login failed: {outcome.error}")
        return 1
    user = ctx.auth_state.user
    print(f"  Logged in as {user.username if user else args.email}. Next: {outcome.redirect_to}")
    return 0


async def _cmd_logout(ctx: ClientContext, args: argparse.Namespace) -> int:
    await ctx.synchronizer.logout()
    print("  Logged out. All credential locations cleared.")
    return 0


async def _cmd_whoami(ctx: ClientContext, args: argparse.Namespace) -> int:
    outcome = await ctx.synchronizer.on_page_load()
    if not outcome.ok:
        print("  Not logged in.")
        return 1
    await ctx.synchronizer.wait_until_validated()
    if not ctx.auth_state.is_authenticated:
        print("  Stored session was rejected by the backend and has been cleared.")
        return 1
    user = ctx.auth_state.user
    if user is None:
        print("  Logged in (user details unavailable).")
    else:
        print(f"  {user.username} <{user.email}> id={user.id}")
    return 0


async def _cmd_feed(ctx: ClientContext, args: argparse.Namespace) -> int:
    await ctx.synchronizer.on_page_load()
    await ctx.synchronizer.wait_until_validated()
    result = await ctx.loader.load_posts(page=args.page, limit=args.limit, timeline=not args.all)
    if result.ok:
        for post in ctx.social.posts:
            author = post.author.username if post.author else "?"
            print(f"  {post.id}  @{author}  likes={post.like_count} comments={post.comment_count}")
    return 0 if result.ok else 1


async def _cmd_diagnose(ctx: ClientContext, args: argparse.Namespace) -> int:
    print(json.dumps(ctx.credentials.diagnose(), indent=2))
    return 0


_ASYNC_COMMANDS = {
    "login": _cmd_login,
    "logout": _cmd_logout,
    "whoami": _cmd_whoami,
    "diagnose": _cmd_diagnose,
    "feed": _cmd_feed,
}


async def _run(args: argparse.Namespace) -> int:
    ctx = ClientContext.create()
    try:
        return await _ASYNC_COMMANDS[args.command](ctx, args)
    finally:
        for note in ctx.notifier.pending():
            print(f"  [{note.level}] {note.message}")
        await ctx.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="inbook",
        description="Inbook client session tooling.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py route /friends-list
  python main.py route "/user-login?noredirect=true" --cookie token=abc
  python main.py login alice@example.com --callback /friends-list
  BACKEND_URL=http://localhost:8000 python main.py whoami
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    route = sub.add_parser("route", help="Show the route guard decision for a page path")
    route.add_argument("path", help="Page path, optionally with a query string")
    route.add_argument(
        "--cookie",
        action="append",
        default=[],
        metavar="NAME[=VALUE]",
        help="Cookie present on the request (repeatable)",
    )

    login = sub.add_parser("login", help="Log in with email and password")
    login.add_argument("email")
    login.add_argument("--password", help="Password (prompted when omitted)")
    login.add_argument("--callback", metavar="PATH", help="Where to go after login")

    sub.add_parser("logout", help="Log out and clear every credential location")
    sub.add_parser("whoami", help="Validate the stored session against the backend")
    sub.add_parser("diagnose", help="Report what each credential location holds")

    feed = sub.add_parser("feed", help="Load and list posts")
    feed.add_argument("--page", type=int, default=1)
    feed.add_argument("--limit", type=int, default=10)
    feed.add_argument("--all", action="store_true", help="All posts instead of the viewer's timeline")

    args = parser.parse_args()

    if args.command == "route":
        sys.exit(_cmd_route(args))
    try:
        sys.exit(asyncio.run(_run(args)))
    except InbookError as exc:
        print(f"  [!] {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()

# src/streamsnap_app/main.py

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .config import ConfigValidationError, load_settings
from .handlers import DriveHandlers, YouTubeHandlers
from .logging_setup import setup_logging
from .services import AccountServices

logger = logging.getLogger(__name__)

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamsnap", description="Manage StreamSnap Google Drive and YouTube accounts."
    )
    parser.add_argument("--data-dir", help="Directory for account files and logs.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("accounts", help="List linked accounts.")

    add_drive = sub.add_parser("add-drive", help="Link a Google Drive account.")
    add_drive.add_argument("--name", help="Display name for the account.")

    sub.add_parser("add-youtube", help="Sign in to a YouTube channel.")

    remove = sub.add_parser("remove", help="Unlink an account.")
    remove.add_argument("provider", choices=["drive", "youtube"])
    remove.add_argument("account_id")

    sub.add_parser("refresh", help="Refresh tokens that are about to expire.")

    folders = sub.add_parser("folders", help="List Drive folders.")
    folders.add_argument("account_id")
    folders.add_argument("--query", default="", help="Only folders whose name contains this.")
    folders.add_argument("--shared", action="store_true", help="Only folders shared with me.")

    upload = sub.add_parser("upload", help="Upload a recording.")
    upload.add_argument("provider", choices=["drive", "youtube"])
    upload.add_argument("account_id")
    upload.add_argument("path")
    upload.add_argument("--folder", help="Drive folder id (default: My Drive).")
    upload.add_argument("--title", help="YouTube title (default: file name).")
    upload.add_argument("--description", default="")
    upload.add_argument("--playlist", help="YouTube playlist id.")
    upload.add_argument(
        "--privacy",
        help="Drive: restricted/anyoneWithLink/anyone/domain. YouTube: private/unlisted/public.",
    )
    return parser


def _print_failure(result: Dict[str, Any]) -> None:
    console.print(f"[bold red]{result['error']}[/bold red]: {result.get('message', '')}")
    if result.get("needsChannel"):
        console.print(f"Create a channel first: {result['createChannelUrl']}")


def _accounts_table(title: str, rows: List[Dict[str, Any]], columns: List[str]) -> Table:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*[str(row.get(column) or "") for column in columns])
    return table


async def run_command(args: argparse.Namespace, services: AccountServices) -> int:
    drive = DriveHandlers(services)
    youtube = YouTubeHandlers(services)

    if args.command == "accounts":
        drive_result = await drive.list_accounts()
        youtube_result = await youtube.list_accounts()
        for result in (drive_result, youtube_result):
            if not result["success"]:
                _print_failure(result)
                return 1
        console.print(
            _accounts_table(
                "Google Drive",
                drive_result["accounts"],
                ["id", "email", "displayName", "isActive", "needsReauth"],
            )
        )
        console.print(
            _accounts_table(
                "YouTube",
                youtube_result["accounts"],
                ["id", "channelName", "email", "active", "needsReauth"],
            )
        )
        return 0

    if args.command == "add-drive":
        result = await drive.create_account(args.name)
    elif args.command == "add-youtube":
        result = await youtube.sign_in()
    elif args.command == "remove":
        handlers = drive if args.provider == "drive" else youtube
        result = await handlers.remove_account(args.account_id)
    elif args.command == "refresh":
        drive_result = await drive.refresh_all_tokens()
        youtube_result = await youtube.refresh_all_tokens()
        total = drive_result.get("refreshed", 0) + youtube_result.get("refreshed", 0)
        result = {"success": True, "refreshed": total}
    elif args.command == "folders":
        if args.query or args.shared:
            result = await drive.list_folders_paged(
                args.account_id, name_query=args.query, shared_with_me=args.shared
            )
            folders = result.get("files", [])
        else:
            result = await drive.list_folders(args.account_id)
            folders = result.get("folders", [])
        if result["success"]:
            console.print(_accounts_table("Folders", folders, ["id", "name", "webViewLink"]))
            return 0
    elif args.command == "upload":
        if args.provider == "drive":
            result = await drive.upload(
                args.account_id,
                args.folder,
                path=args.path,
                privacy=args.privacy or "restricted",
            )
        else:
            result = await youtube.upload(
                args.account_id,
                title=args.title,
                path=args.path,
                description=args.description,
                privacy=args.privacy or "private",
                playlist_id=args.playlist,
            )
    else:
        return 2

    if not result["success"]:
        _print_failure(result)
        return 1
    console.print({k: v for k, v in result.items() if k != "success"})
    return 0


async def _amain(args: argparse.Namespace) -> int:
    settings = load_settings(args.data_dir)
    setup_logging(settings.data_dir, settings.log_level)
    async with AccountServices(settings) as services:
        await services.start(background=False)
        return await run_command(args, services)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_amain(args))
    except ConfigValidationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2
    except KeyboardInterrupt:
        console.print("[yellow]Cancelled.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())

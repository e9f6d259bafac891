"""Utility: scan one receipt image end to end against a running API.

  python -m expense_api.scripts.scan_receipt receipt.jpg \
      --api-url http://localhost:8000 --token "$ACCESS_TOKEN" --grant-consent --save

Uploads the image, waits for AI processing and prints the suggested
expenses. With ``--save`` the suggestions are persisted unchanged.
Exit code 0 on success, 1 when the flow ends in an error.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Optional, Sequence

from expense_api.core.observability import init_sentry
from expense_api.models.enums import ScanStep
from expense_api.scan_flow.api_client import ScanFlowAPI
from expense_api.scan_flow.controller import ScanFlowController


def _print_verification(controller: ScanFlowController) -> None:
    data = controller.state.processed_data
    if data is None:
        return
    print(f"[scan] receipt date {data.receipt_date}, total {data.total_amount} {data.currency}")
    for expense in controller.state.edited_expenses:
        print(f"  {expense.category_name:<16} {expense.amount:>10}")
        for item in expense.items:
            print(f"      {item}")


def _report_error(controller: ScanFlowController) -> int:
    error = controller.state.error
    code = error.code if error else "UNKNOWN"
    print(f"[scan] {code}: {controller.error_message}", file=sys.stderr)
    if controller.can_continue_manually:
        print("[scan] you can still add the expenses manually", file=sys.stderr)
    return 1


async def run(args: argparse.Namespace) -> int:
    path = Path(args.image)
    data = path.read_bytes()
    content_type = args.content_type or mimetypes.guess_type(path.name)[0] or "image/jpeg"

    async with ScanFlowAPI(args.api_url, token=args.token) as api:
        controller = ScanFlowController(api)
        await controller.start()
        if controller.state.step == ScanStep.CONSENT:
            if not args.grant_consent:
                print("[scan] AI consent not granted; rerun with --grant-consent", file=sys.stderr)
                return 1
            await controller.grant_consent()
        if controller.state.step == ScanStep.ERROR:
            return _report_error(controller)

        await controller.upload(path.name, data, content_type)
        if controller.state.step != ScanStep.VERIFICATION:
            return _report_error(controller)
        _print_verification(controller)

        if args.save:
            await controller.save()
            if controller.state.step != ScanStep.COMPLETE:
                return _report_error(controller)
            print(f"[scan] saved {controller.saved.count if controller.saved else 0} expenses")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Scan a receipt image into expenses")
    parser.add_argument("image", help="Path to a JPEG, PNG or HEIC receipt image")
    parser.add_argument("--api-url", default="http://localhost:8000", help="Base URL of the receipt API")
    parser.add_argument("--token", help="Supabase access token (omit when the API runs with DEV_AUTH_BYPASS)")
    parser.add_argument("--content-type", help="Override the detected MIME type")
    parser.add_argument("--grant-consent", action="store_true", help="Grant AI consent if it is missing")
    parser.add_argument("--save", action="store_true", help="Save the suggested expenses")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    init_sentry("scan-cli")
    return asyncio.run(run(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

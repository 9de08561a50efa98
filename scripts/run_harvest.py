"""
Run the listing harvest from the command line.
"""

from __future__ import annotations

import argparse
import json
import sys

from harvester.config import STAGES
from harvester.scraping.logging_utils import configure_logging
from harvester.scraping.run_context import install_signal_handlers
from harvester.services.harvest_service import HarvestService


def main() -> int:
    parser = argparse.ArgumentParser(description="Discover, extract and enrich listings.")
    parser.add_argument(
        "--target",
        dest="targets",
        action="append",
        default=None,
        help="Target name from the targets file. Repeat to select several; default is all enabled.",
    )
    parser.add_argument(
        "--stage",
        dest="stages",
        action="append",
        choices=STAGES,
        default=None,
        help="Stage to run. Repeat to select several; default is every stage.",
    )
    parser.add_argument(
        "--reset-checkpoint",
        action="store_true",
        help="Forget the saved discovery checkpoint of the selected targets first.",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume discovery after the last persisted page instead of each target's start page.",
    )
    args = parser.parse_args()

    configure_logging()
    service = HarvestService()
    context = service.new_context()
    install_signal_handlers(context, grace_seconds=service.settings.run.shutdown_grace_seconds)

    try:
        summaries = service.run(
            targets=args.targets,
            stages=args.stages,
            reset_checkpoint=args.reset_checkpoint,
            resume=args.resume,
            context=context,
        )
    except (ValueError, FileNotFoundError) as exc:
        print(json.dumps({"error": str(exc)}, indent=2), file=sys.stderr)
        return 2

    payload = {
        "stop_reason": context.stop_reason,
        "targets": [summary.as_dict() for summary in summaries],
    }
    print(json.dumps(payload, indent=2, default=str, ensure_ascii=False))
    if context.stop_reason:
        return 130
    return 1 if any(summary.status == "failed" for summary in summaries) else 0


if __name__ == "__main__":
    raise SystemExit(main())

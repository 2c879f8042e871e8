"""
Segmentation operator CLI.

    python -m app.cli init-db
    python -m app.cli seed-predefined --owner-id <owner>
    python -m app.cli list --owner-id <owner> [--include-analysis]
    python -m app.cli show --owner-id <owner> --segment-id <segment>
    python -m app.cli refresh --owner-id <owner> [--segment-id <segment>]
    python -m app.cli analytics --owner-id <owner> --segment-id <segment>

Each command prints a JSON summary to stdout.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from app.config import settings
from app.database import get_engine, get_session_maker, init_db
from app.exceptions import AppException, NotFoundError
from app.schemas.segment import (
    SegmentAnalysisResponse,
    SegmentDetailResponse,
    SegmentListResponse,
    SegmentResponse,
)
from app.services.segmentation import SegmentationService

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


async def cmd_init_db(args: argparse.Namespace) -> Dict[str, Any]:
    await init_db()
    return {"status": "ok", "message": "Database tables created"}


async def cmd_seed_predefined(args: argparse.Namespace) -> Dict[str, Any]:
    async with get_session_maker()() as session:
        service = SegmentationService(session)
        segments = await service.create_predefined_segments(args.owner_id)
        return {
            "owner_id": args.owner_id,
            "segments": [
                {"id": s.id, "name": s.name, "member_count": s.member_count} for s in segments
            ],
        }


def segment_summary(segment, include_analysis: bool = False) -> SegmentResponse:
    """Response model for a listed segment; members and analysis are not loaded by the listing."""
    data = {name: getattr(segment, name) for name in SegmentResponse.model_fields if name != "analysis"}
    data["analysis"] = segment.analysis if include_analysis else None
    return SegmentResponse.model_validate(data, from_attributes=True)


async def cmd_list(args: argparse.Namespace) -> Dict[str, Any]:
    async with get_session_maker()() as session:
        service = SegmentationService(session)
        segments = await service.get_segments(args.owner_id, include_analysis=args.include_analysis)
        items = [segment_summary(s, args.include_analysis) for s in segments]
        return SegmentListResponse(items=items, total=len(items)).model_dump(mode="json")


async def cmd_show(args: argparse.Namespace) -> Dict[str, Any]:
    async with get_session_maker()() as session:
        service = SegmentationService(session)
        segment = await service.get_segment_by_id(args.segment_id, args.owner_id)
        if segment is None:
            raise NotFoundError("Segment", args.segment_id)
        return SegmentDetailResponse.model_validate(segment).model_dump(mode="json")


async def cmd_refresh(args: argparse.Namespace) -> Dict[str, Any]:
    async with get_session_maker()() as session:
        service = SegmentationService(session)
        if args.segment_id:
            result = await service.refresh_segment(args.segment_id, args.owner_id)
            return {
                "segment_id": result.segment_id,
                "total_members": result.total_members,
                "customers_added": result.customers_added,
                "customers_removed": result.customers_removed,
                "execution_time_ms": round(result.execution_time_ms, 2),
            }
        refreshed = await service.refresh_auto_segments(args.owner_id)
        return {"owner_id": args.owner_id, "segments_refreshed": refreshed}


async def cmd_analytics(args: argparse.Namespace) -> Dict[str, Any]:
    async with get_session_maker()() as session:
        service = SegmentationService(session)
        analysis = await service.calculate_segment_analytics(args.segment_id, args.owner_id)
        if analysis is None:
            return {"segment_id": args.segment_id, "analysis": None}
        return {
            "segment_id": args.segment_id,
            "analysis": SegmentAnalysisResponse.model_validate(analysis).model_dump(mode="json"),
        }


COMMANDS = {
    "init-db": cmd_init_db,
    "seed-predefined": cmd_seed_predefined,
    "list": cmd_list,
    "show": cmd_show,
    "refresh": cmd_refresh,
    "analytics": cmd_analytics,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bizops-segments", description="Customer segmentation tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    seed = subparsers.add_parser("seed-predefined", help="Create the predefined rule-based segments")
    seed.add_argument("--owner-id", required=True)

    listing = subparsers.add_parser("list", help="List an owner's active segments")
    listing.add_argument("--owner-id", required=True)
    listing.add_argument("--include-analysis", action="store_true")

    show = subparsers.add_parser("show", help="Show one segment with its members and analysis")
    show.add_argument("--owner-id", required=True)
    show.add_argument("--segment-id", required=True)

    refresh = subparsers.add_parser("refresh", help="Refresh one segment, or every auto segment of an owner")
    refresh.add_argument("--owner-id", required=True)
    refresh.add_argument("--segment-id", default=None)

    analytics = subparsers.add_parser("analytics", help="Recompute analytics for a segment")
    analytics.add_argument("--owner-id", required=True)
    analytics.add_argument("--segment-id", required=True)

    return parser


async def run(args: argparse.Namespace) -> Dict[str, Any]:
    try:
        return await COMMANDS[args.command](args)
    finally:
        await get_engine().dispose()


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        summary = asyncio.run(run(args))
    except AppException as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_problem_detail().model_dump(exclude_none=True), indent=2))
        return 1

    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())

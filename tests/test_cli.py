"""Tests for the operator CLI."""

import json

import pytest

from app import cli
from app.exceptions import NotFoundError
from app.schemas.segment import SegmentListResponse


class TestCliParser:

    def test_refresh_arguments(self):
        args = cli.build_parser().parse_args(["refresh", "--owner-id", "o1", "--segment-id", "s1"])

        assert args.command == "refresh"
        assert args.owner_id == "o1"
        assert args.segment_id == "s1"

    def test_refresh_all_segments(self):
        args = cli.build_parser().parse_args(["refresh", "--owner-id", "o1"])

        assert args.segment_id is None

    def test_analytics_requires_segment(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["analytics", "--owner-id", "o1"])

    def test_list_arguments(self):
        args = cli.build_parser().parse_args(["list", "--owner-id", "o1", "--include-analysis"])

        assert args.command == "list"
        assert args.include_analysis is True

    def test_show_requires_segment(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["show", "--owner-id", "o1"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestSegmentSummary:

    @pytest.mark.asyncio
    async def test_listed_segment_summary(self, service, owner_id):
        await service.create_segment(
            owner_id, "Austin", {"rules": [{"field": "city", "operator": "eq", "value": "Austin"}]}, "rule-based"
        )
        [segment] = await service.get_segments(owner_id, include_analysis=True)

        summary = cli.segment_summary(segment, include_analysis=True)
        listing = SegmentListResponse(items=[summary], total=1).model_dump(mode="json")

        assert listing["total"] == 1
        assert listing["items"][0]["criteria"]["rules"][0]["value"] == "Austin"
        assert listing["items"][0]["segment_type"] == "rule-based"
        assert listing["items"][0]["is_auto"] is True
        assert listing["items"][0]["analysis"] is None


class TestCliMain:

    def test_prints_summary(self, monkeypatch, capsys):
        async def fake_run(args):
            return {"owner_id": args.owner_id, "segments_refreshed": 2}

        monkeypatch.setattr(cli, "run", fake_run)

        assert cli.main(["refresh", "--owner-id", "o1"]) == 0
        assert json.loads(capsys.readouterr().out) == {"owner_id": "o1", "segments_refreshed": 2}

    def test_engine_errors_reported_as_problem_detail(self, monkeypatch, capsys):
        async def fake_run(args):
            raise NotFoundError("Segment", args.segment_id)

        monkeypatch.setattr(cli, "run", fake_run)

        assert cli.main(["analytics", "--owner-id", "o1", "--segment-id", "s9"]) == 1
        problem = json.loads(capsys.readouterr().out)
        assert problem["status"] == 404
        assert problem["detail"] == "Segment with ID s9 was not found"

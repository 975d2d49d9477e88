import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from shorts_relay.errors import FailureAnalyzer
from shorts_relay.models import ProcessingOutcome
from shorts_relay.progress import OutcomeEvent, StatusEvent


@pytest.mark.parametrize(
    "message, category",
    [
        ("Downloaded file is invalid: html_error_page", "invalid_file"),
        ("Pre-signed URL request failed (HTTP 401): Unauthorized", "auth"),
        ("Pre-signed URL response is missing upload_url", "presigned_url"),
        ("ERROR: This video is not available in your country", "geo_restricted"),
        ("ERROR: Sign in to confirm your age", "age_restricted"),
        ("ERROR: Private video", "private_deleted"),
        ("ERROR: Video unavailable", "video_unavailable"),
        ("HTTP Error 429: Too Many Requests", "rate_limit"),
        ("Upload failed (HTTP 500): quota exceeded", "storage"),
        ("Something odd happened", "unknown"),
    ],
)
def test_categorizes_failures(message, category):
    analyzer = FailureAnalyzer()

    assert analyzer.categorize_and_record("p1", message) == category
    assert analyzer.patterns[category].count == 1
    assert analyzer.patterns[category].item_ids == ["p1"]


def test_report_counts_outcomes_and_ignores_other_events():
    analyzer = FailureAnalyzer()

    analyzer.report(StatusEvent("p1", "Uploading..."))
    analyzer.report(OutcomeEvent(ProcessingOutcome("p1", "u1", True, storage_path="k")))
    analyzer.report(OutcomeEvent(ProcessingOutcome("p2", "u1", False, error_message="ERROR: Video unavailable")))

    assert analyzer.succeeded == 1
    assert analyzer.total_errors == 1
    assert analyzer.patterns["video_unavailable"].item_ids == ["p2"]


def test_recommendations():
    analyzer = FailureAnalyzer()
    assert analyzer.get_recommendations() == [
        "No failures detected - every item was relayed successfully!"
    ]

    analyzer.categorize_and_record("p1", "Upload failed: NoSuchBucket")
    analyzer.categorize_and_record("p2", "auth token expired")

    recommendations = analyzer.get_recommendations()
    assert any(rec.startswith("Authentication failures (1 items)") for rec in recommendations)
    assert any(rec.startswith("Storage failures (1 items)") for rec in recommendations)


def test_error_log_and_summary(tmp_path, capsys):
    log_path = tmp_path / "errors.log"
    analyzer = FailureAnalyzer()
    analyzer.set_error_log_path(str(log_path))

    analyzer.categorize_and_record("p1", "HTTP Error 403: Forbidden")
    analyzer.print_summary()

    assert "[rate_limit] p1: HTTP Error 403: Forbidden" in log_path.read_text(encoding="utf-8")
    out, _ = capsys.readouterr()
    assert "Failure Pattern Analysis" in out
    assert "Rate Limit: 1 occurrences" in out
    assert f"Detailed error log: {log_path}" in out

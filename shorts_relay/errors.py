"""Error taxonomy and failure analysis for the relay pipeline."""

import sys
from datetime import datetime
from typing import Dict, List, Optional

from .models import ErrorPattern
from .progress import Event, OutcomeEvent, ProgressSink


class RelayError(Exception):
    """Base class for every error the relay raises across a component boundary."""


class FetchAttemptError(RelayError):
    """A single attempt of a fetch strategy failed."""


class StrategyExhausted(RelayError):
    """A fetch strategy used all of its retries."""

    def __init__(self, strategy: str, attempts: int, last_error: str) -> None:
        self.strategy = strategy
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{strategy} failed after {attempts} attempt(s): {last_error}"
        )


class StrategyUnavailable(RelayError):
    """A fetch strategy cannot run in this environment or configuration."""


class DownloadFailed(RelayError):
    """Every strategy in the chain failed for an item."""


class ValidationFailed(DownloadFailed):
    """Downloaded bytes exist but do not look like a media file."""

    def __init__(self, reason: str, path: Optional[str] = None) -> None:
        self.reason = reason
        self.path = path
        super().__init__(f"Downloaded file is invalid: {reason}")


class PreSignedUrlFailed(RelayError):
    """The backend did not hand out a usable upload URL."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class InvalidPreSignedRequest(PreSignedUrlFailed, ValueError):
    """Raised before any request is made when required inputs are missing."""


class UploadFailed(RelayError):
    """The upload to object storage did not complete."""


class UploadHttpError(UploadFailed):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"Upload failed (HTTP {status_code}): {body or 'no response body'}"
        )


class UploadNetworkError(UploadFailed):
    pass


class UploadStreamError(UploadFailed):
    pass


class UploadTimeout(UploadFailed):
    pass


class AuthTokenFailed(RelayError):
    """No bearer token could be obtained; the item is retried later."""


class DispatchUnavailable(RelayError):
    """No upload route is usable right now; the item is retried later."""


class FailureAnalyzer(ProgressSink):
    """Categorizes failed outcomes and suggests remediation strategies."""

    def __init__(self) -> None:
        self.patterns: Dict[str, ErrorPattern] = {
            "geo_restricted": ErrorPattern("geo_restricted"),
            "age_restricted": ErrorPattern("age_restricted"),
            "private_deleted": ErrorPattern("private_deleted"),
            "video_unavailable": ErrorPattern("video_unavailable"),
            "rate_limit": ErrorPattern("rate_limit"),
            "invalid_file": ErrorPattern("invalid_file"),
            "auth": ErrorPattern("auth"),
            "presigned_url": ErrorPattern("presigned_url"),
            "storage": ErrorPattern("storage"),
            "unknown": ErrorPattern("unknown"),
        }
        self.total_errors = 0
        self.succeeded = 0
        self.error_log_path: Optional[str] = None

    def set_error_log_path(self, path: str) -> None:
        """Set the path for the detailed error log file."""
        self.error_log_path = path

    def report(self, event: Event) -> None:
        if not isinstance(event, OutcomeEvent):
            return
        outcome = event.outcome
        if outcome.success:
            self.succeeded += 1
            return
        self.categorize_and_record(outcome.item_id, outcome.error_message or "")

    def categorize_and_record(self, item_id: Optional[str], error_message: str) -> str:
        """Categorize a failure and record it. Returns the category."""
        self.total_errors += 1
        lowered = error_message.lower()

        category = "unknown"

        # Order matters - more specific first
        if "downloaded file is invalid" in lowered:
            category = "invalid_file"
        elif any(x in lowered for x in ["http 401", "unauthorized", "auth token", "token expired"]):
            category = "auth"
        elif "pre-signed" in lowered or "upload_url" in lowered:
            category = "presigned_url"
        elif any(x in lowered for x in ["not available in your country", "geo"]):
            category = "geo_restricted"
        elif any(x in lowered for x in ["sign in to confirm your age", "age-restricted", "age restricted"]):
            category = "age_restricted"
        elif any(x in lowered for x in ["private", "deleted", "removed", "uploader has not made"]):
            category = "private_deleted"
        elif any(x in lowered for x in ["video unavailable", "content isn't available", "content is not available"]):
            category = "video_unavailable"
        elif any(x in lowered for x in ["403", "forbidden", "too many requests", "429", "rate limit"]):
            category = "rate_limit"
        elif any(x in lowered for x in ["upload failed", "bucket", "storage", "quota"]):
            category = "storage"

        self.patterns[category].record(item_id, error_message)

        if self.error_log_path:
            self._append_to_error_log(item_id, category, error_message)

        return category

    def _append_to_error_log(self, item_id: Optional[str], category: str, message: str) -> None:
        """Append failure details to the error log file."""
        try:
            timestamp = datetime.now().isoformat()
            log_entry = f"[{timestamp}] [{category}] {item_id or 'unknown'}: {message}\n"

            with open(self.error_log_path, "a", encoding="utf-8") as f:
                f.write(log_entry)
        except OSError as e:
            # Don't fail the run if error logging fails
            print(f"Warning: Failed to write to error log: {e}", file=sys.stderr)

    def get_recommendations(self) -> List[str]:
        """Generate recommendations based on failure patterns."""
        if self.total_errors == 0:
            return ["No failures detected - every item was relayed successfully!"]

        recommendations = []

        if self.patterns["geo_restricted"].count > 0:
            recommendations.append(
                f"Geo-restriction ({self.patterns['geo_restricted'].count} items): "
                "Use --proxy with an exit node in a different region."
            )

        if self.patterns["age_restricted"].count > 0:
            recommendations.append(
                f"Age-restricted ({self.patterns['age_restricted'].count} items): "
                "Sign in to YouTube in your browser and pass --cookies-from-browser."
            )

        if self.patterns["private_deleted"].count > 0:
            recommendations.append(
                f"Private/Deleted ({self.patterns['private_deleted'].count} items): "
                "These videos are no longer available. Ask the owner for a new link."
            )

        if self.patterns["video_unavailable"].count > 0 or self.patterns["rate_limit"].count > 0:
            blocked = self.patterns["video_unavailable"].count + self.patterns["rate_limit"].count
            recommendations.append(
                f"Blocked or throttled ({blocked} items): "
                "YouTube may be rate limiting this address. Raise --retry-delay, "
                "use --cookies-from-browser or route through --proxy/--proxy-file."
            )

        if self.patterns["invalid_file"].count > 0:
            recommendations.append(
                f"Invalid downloads ({self.patterns['invalid_file'].count} items): "
                "The source returned an error page instead of media. Check that the URL is a direct video link."
            )

        if self.patterns["auth"].count > 0:
            recommendations.append(
                f"Authentication failures ({self.patterns['auth'].count} items): "
                "Refresh the token in --auth-token-file or sign in again."
            )

        if self.patterns["presigned_url"].count > 0:
            recommendations.append(
                f"Pre-signed URL failures ({self.patterns['presigned_url'].count} items): "
                "Check --api-base-url and that the auth token is still valid."
            )

        if self.patterns["storage"].count > 0:
            recommendations.append(
                f"Storage failures ({self.patterns['storage'].count} items): "
                "Verify the bucket exists, credentials are correct and quota is available."
            )

        if self.patterns["unknown"].count > 0:
            recommendations.append(
                f"Unknown errors ({self.patterns['unknown'].count}): "
                "Check the error log for details. May require manual investigation."
            )

        return recommendations

    def print_summary(self) -> None:
        """Print a formatted summary of failure patterns."""
        if self.total_errors == 0:
            print(f"\nNo failures detected ({self.succeeded} item(s) relayed).")
            return

        print("\n" + "=" * 70)
        print("Failure Pattern Analysis")
        print("=" * 70)
        print(f"Succeeded: {self.succeeded}")
        print(f"Failed: {self.total_errors}\n")

        sorted_patterns = sorted(
            self.patterns.items(),
            key=lambda x: x[1].count,
            reverse=True,
        )

        for name, pattern in sorted_patterns:
            if pattern.count > 0:
                print(f"{name.replace('_', ' ').title()}: {pattern.count} occurrences")
                print(f"  Affected items: {', '.join(pattern.item_ids[:10])}")
                if pattern.sample_messages:
                    print(f"  Sample: {pattern.sample_messages[0][:80]}...")
                print()

        print("=" * 70)
        print("Recommendations")
        print("=" * 70)
        for rec in self.get_recommendations():
            print(f"{rec}\n")
        print("=" * 70)

        if self.error_log_path:
            print(f"\nDetailed error log: {self.error_log_path}")

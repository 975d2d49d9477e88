"""Shorts relay package: download pending videos and upload them to object storage."""

# Import main components for easier access
from .auth import FileTokenProvider, StaticTokenProvider, build_token_provider
from .config import apply_environment_defaults, parse_args, positive_int
from .downloader import DownloadOrchestrator, cleanup_temp_file, validate_downloaded_file
from .errors import (
    AuthTokenFailed,
    DispatchUnavailable,
    DownloadFailed,
    FailureAnalyzer,
    PreSignedUrlFailed,
    RelayError,
    StrategyExhausted,
    StrategyUnavailable,
    UploadFailed,
    ValidationFailed,
)
from .health_check import run_health_check
from .logger import DownloadLogger
from .models import (
    DirectBucketTarget,
    DownloadResult,
    ItemState,
    PreSignedPutTarget,
    ProcessingOutcome,
    WorkItem,
    normalize_url,
    normalize_video_url,
)
from .pipeline import ItemPipeline
from .presigned import PreSignedUrlClient
from .progress import ConsoleProgressSink, FanOutSink, ProgressSink
from .sequencer import Sequencer
from .service import RelayService, build_service
from .sources import JsonFileStatusReporter, load_work_items_from_file
from .strategies import (
    HttpStrategy,
    PytubefixStrategy,
    RetryPolicy,
    YtDlpStrategy,
    build_strategy_chain,
)
from .uploader import StorageSettings, UploadDispatcher
from .watcher import run_watch_loop, watch_items_file

__all__ = [
    # Main entry points
    "parse_args",
    "apply_environment_defaults",
    "build_service",
    "run_health_check",
    "watch_items_file",
    "run_watch_loop",
    # Work items
    "load_work_items_from_file",
    "JsonFileStatusReporter",
    "normalize_url",
    "normalize_video_url",
    # Models and data structures
    "WorkItem",
    "DownloadResult",
    "DirectBucketTarget",
    "PreSignedPutTarget",
    "ProcessingOutcome",
    "ItemState",
    # Pipeline components
    "RetryPolicy",
    "YtDlpStrategy",
    "PytubefixStrategy",
    "HttpStrategy",
    "build_strategy_chain",
    "DownloadOrchestrator",
    "validate_downloaded_file",
    "cleanup_temp_file",
    "UploadDispatcher",
    "StorageSettings",
    "PreSignedUrlClient",
    "ItemPipeline",
    "Sequencer",
    "RelayService",
    "StaticTokenProvider",
    "FileTokenProvider",
    "build_token_provider",
    # Observers
    "ProgressSink",
    "ConsoleProgressSink",
    "FanOutSink",
    "FailureAnalyzer",
    "DownloadLogger",
    # Errors
    "RelayError",
    "StrategyExhausted",
    "StrategyUnavailable",
    "DownloadFailed",
    "ValidationFailed",
    "PreSignedUrlFailed",
    "UploadFailed",
    "AuthTokenFailed",
    "DispatchUnavailable",
    # Configuration
    "positive_int",
]

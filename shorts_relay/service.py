"""Single-flight relay service: feeds queued items through the pipeline one at a time."""

import sys
import threading
from typing import Iterable, List, Optional

import requests

from .auth import TokenProvider, build_token_provider
from .downloader import DownloadOrchestrator
from .errors import AuthTokenFailed, DispatchUnavailable
from .models import DEFAULT_NAMESPACE, DEFAULT_REQUEUE_DELAY, ProcessingOutcome, WorkItem
from .pipeline import ItemPipeline
from .presigned import PreSignedUrlClient
from .progress import NullProgressSink, OutcomeEvent, ProgressSink, StatusEvent
from .sequencer import Sequencer
from .sources import StatusReporter
from .strategies import build_strategy_chain
from .uploader import DEFAULT_UPLOAD_TIMEOUT, StorageSettings, UploadDispatcher


class RelayService:
    """Owns the sequencer and drives it from either a worker thread or the caller."""

    def __init__(
        self,
        pipeline: ItemPipeline,
        sink: Optional[ProgressSink] = None,
        token_provider: Optional[TokenProvider] = None,
        status_reporter: Optional[StatusReporter] = None,
        requeue_delay: float = DEFAULT_REQUEUE_DELAY,
    ) -> None:
        self.pipeline = pipeline
        self.sink = sink or NullProgressSink()
        self.token_provider = token_provider
        self.status_reporter = status_reporter
        self.requeue_delay = requeue_delay
        self.sequencer = Sequencer()
        self._condition = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def submit(self, items: Iterable[WorkItem]) -> int:
        """Queue items that are neither queued nor in flight; returns how many were added."""
        added: List[WorkItem] = []
        with self._condition:
            for item in items:
                if self.sequencer.enqueue(item):
                    added.append(item)
            if added:
                self._condition.notify_all()
        for item in added:
            print(f"[queue] Queued item {item.item_id} ({item.source_url})")
        return len(added)

    def _next_item(self, block: bool) -> Optional[WorkItem]:
        with self._condition:
            while True:
                item = self.sequencer.dequeue_next()
                if item is not None or not block or self._stop_event.is_set():
                    return item
                self._condition.wait(timeout=1.0)

    def process_one(self, item: WorkItem) -> Optional[ProcessingOutcome]:
        """Process an in-flight item. Returns None when it was requeued instead."""
        self.sink.report(StatusEvent(item.item_id, "Processing..."))
        try:
            outcome = self.pipeline.process(item, self.token_provider)
        except (AuthTokenFailed, DispatchUnavailable) as exc:
            with self._condition:
                self.sequencer.requeue_front(item)
            print(f"[queue] Requeued item {item.item_id} at the front: {exc}", file=sys.stderr)
            self.sink.report(
                StatusEvent(item.item_id, f"{exc}. Retrying in {self.requeue_delay:g}s...")
            )
            self._stop_event.wait(self.requeue_delay)
            return None
        except Exception as exc:
            print(
                f"[queue] Item {item.item_id} raised {type(exc).__name__}: {exc}",
                file=sys.stderr,
            )
            outcome = ProcessingOutcome(
                item_id=item.item_id,
                owner_id=item.owner_id,
                success=False,
                error_message=f"Unexpected error: {exc}",
            )

        self._complete(item, outcome)
        return outcome

    def _complete(self, item: WorkItem, outcome: ProcessingOutcome) -> None:
        self.sink.report(OutcomeEvent(outcome))
        if self.status_reporter is not None:
            try:
                self.status_reporter.report_outcome(outcome)
            except Exception as exc:
                print(
                    f"Warning: failed to report status for item {item.item_id}: {exc}",
                    file=sys.stderr,
                )
        with self._condition:
            self.sequencer.finish(item.item_id, outcome.success)
            self._condition.notify_all()

    def process_pending(self) -> List[ProcessingOutcome]:
        """Drain the queue on the calling thread."""
        outcomes: List[ProcessingOutcome] = []
        while not self._stop_event.is_set():
            item = self._next_item(block=False)
            if item is None:
                break
            outcome = self.process_one(item)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def _run(self) -> None:
        while not self._stop_event.is_set():
            item = self._next_item(block=True)
            if item is None:
                continue
            self.process_one(item)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="relay-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        with self._condition:
            self._condition.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            return self._condition.wait_for(
                lambda: not len(self.sequencer) and self.sequencer.in_flight is None,
                timeout,
            )


def build_storage_settings(args) -> StorageSettings:
    return StorageSettings(
        endpoint=getattr(args, "storage_endpoint", None),
        port=getattr(args, "storage_port", None),
        use_ssl=bool(getattr(args, "storage_use_ssl", True)),
        access_key=getattr(args, "storage_access_key", None),
        secret_key=getattr(args, "storage_secret_key", None),
        bucket=getattr(args, "storage_bucket", None),
        region=getattr(args, "storage_region", None),
    )


def build_pipeline(args, sink: Optional[ProgressSink] = None) -> ItemPipeline:
    """Wire strategies, orchestrator, dispatcher and the chosen upload route from args."""
    session = requests.Session()
    orchestrator = DownloadOrchestrator(
        build_strategy_chain(args, session=session),
        temp_dir=getattr(args, "temp_dir", None),
        sink=sink,
    )
    storage = build_storage_settings(args)
    dispatcher = UploadDispatcher(
        storage,
        session=session,
        upload_timeout=getattr(args, "upload_timeout", None) or DEFAULT_UPLOAD_TIMEOUT,
    )

    presigned_client = None
    api_base_url = getattr(args, "api_base_url", None)
    if api_base_url:
        presigned_client = PreSignedUrlClient(api_base_url, session=session)
        print(f"Upload route: pre-signed PUT via {presigned_client.endpoint}")
    elif storage.configured:
        print(f"Upload route: direct bucket {storage.bucket} ({storage.endpoint_url or 'AWS default endpoint'})")
    else:
        print("Warning: no upload route configured; items will wait in the queue", file=sys.stderr)

    return ItemPipeline(
        orchestrator,
        dispatcher,
        presigned_client=presigned_client,
        bucket_name=None if presigned_client else storage.bucket,
        namespace=getattr(args, "namespace", None) or DEFAULT_NAMESPACE,
        sink=sink,
    )


def build_service(
    args,
    sink: Optional[ProgressSink] = None,
    status_reporter: Optional[StatusReporter] = None,
) -> RelayService:
    requeue_delay = getattr(args, "requeue_delay", None)
    return RelayService(
        build_pipeline(args, sink),
        sink=sink,
        token_provider=build_token_provider(args),
        status_reporter=status_reporter,
        requeue_delay=DEFAULT_REQUEUE_DELAY if requeue_delay is None else requeue_delay,
    )

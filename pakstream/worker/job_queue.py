"""
Video Processing Queue

Admits transcode jobs against a fixed concurrency ceiling:
- FIFO pending list, at most one job per video (pending or running)
- Each job moves its video record uploading -> processing -> ready | error
- Progress is relayed to the record and to connected observers
- Finished videos are pushed to edge servers in the background
- Optional write-ahead journal so queued work survives a restart

Every mutation of the pending list / running set happens under one lock.
Jobs run as asyncio tasks; synchronous transcoders and record store writes
are moved to worker threads so a long encode never blocks request handling.
"""

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

from ..exceptions import DuplicateJobError
from ..logging_config import get_logger
from ..services.uploads import processed_dir_for
from .transcoder import TranscodeResult

logger = get_logger("queue")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """One video's transcode request. Never outlives the process except via the journal."""
    video_id: str
    input_path: str
    enqueued_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "video_id": self.video_id,
            "input_path": self.input_path,
            "enqueued_at": self.enqueued_at.isoformat(),
        }


class JobQueue:
    """Bounded-concurrency processing queue"""

    def __init__(
        self,
        store,
        transcoder,
        notifier=None,
        edge_sync=None,
        max_concurrent: int = 2,
        processed_root: str = "./uploads/videos/processed",
        journal=None,
        job_timeout: Optional[float] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._store = store
        self._transcoder = transcoder
        self._notifier = notifier
        self._edge_sync = edge_sync
        self._journal = journal
        self.max_concurrent = max_concurrent
        self.processed_root = Path(processed_root)
        self.job_timeout = job_timeout or None

        self._lock = threading.Lock()
        self._pending: Deque[Job] = deque()
        self._processing: Dict[str, Job] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._progress: Dict[str, int] = {}
        self._progress_writes: Dict[str, Set[asyncio.Task]] = {}
        # Jobs whose outcome is already recorded; their late progress is dropped
        self._settled: Set[str] = set()
        self._closed = False

    # ============================================================
    # QUEUE OPERATIONS
    # ============================================================

    def enqueue(self, video_id: str, input_path: str) -> Job:
        """Append a job and try to start it. Must be called on the event loop.

        Raises DuplicateJobError if the video already has a queued or
        running job.
        """
        video_id = str(video_id)
        with self._lock:
            if video_id in self._processing:
                raise DuplicateJobError(video_id, "processing")
            if any(job.video_id == video_id for job in self._pending):
                raise DuplicateJobError(video_id, "queued")

            job = Job(video_id=video_id, input_path=str(input_path))
            if self._journal is not None:
                self._journal.record(job.video_id, job.input_path, job.enqueued_at)
            self._pending.append(job)
            queue_length = len(self._pending)

        logger.info("job_enqueued", video_id=video_id, queue_length=queue_length)
        self._admit()
        return job

    def cancel(self, video_id: str) -> bool:
        """Remove a job that has not started yet."""
        video_id = str(video_id)
        with self._lock:
            for job in self._pending:
                if job.video_id == video_id:
                    self._pending.remove(job)
                    if self._journal is not None:
                        self._journal.remove(video_id)
                    break
            else:
                return False

        logger.info("job_cancelled", video_id=video_id)
        return True

    def clear(self) -> int:
        """Drop every pending job. Running jobs are left alone."""
        with self._lock:
            dropped = [job.video_id for job in self._pending]
            self._pending.clear()
            if self._journal is not None:
                self._journal.remove_many(dropped)

        logger.info("queue_cleared", count=len(dropped))
        return len(dropped)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "pending": len(self._pending),
                "pending_videos": [job.video_id for job in self._pending],
                "processing": list(self._processing.keys()),
                "active_jobs": len(self._processing),
                "max_concurrent": self.max_concurrent,
            }

    def is_processing(self, video_id: str) -> bool:
        return str(video_id) in self._processing

    def is_queued(self, video_id: str) -> bool:
        video_id = str(video_id)
        with self._lock:
            return any(job.video_id == video_id for job in self._pending)

    def recover(self) -> int:
        """Re-queue journaled jobs left behind by a previous process."""
        if self._journal is None:
            return 0

        recovered = 0
        finished = []
        for video_id, input_path in self._journal.entries():
            snapshot = self._store.get(video_id)
            if snapshot is None or snapshot["status"] in ("ready", "error", "failed"):
                finished.append(video_id)
                continue
            with self._lock:
                if video_id in self._processing or any(j.video_id == video_id for j in self._pending):
                    continue
                self._pending.append(Job(video_id=video_id, input_path=input_path))
            recovered += 1

        self._journal.remove_many(finished)
        if recovered:
            logger.info("queue_recovered", count=recovered)
            self._admit()
        return recovered

    async def drain(self, include_edge_sync: bool = True):
        """Wait until nothing is running (and, optionally, no edge sync is in flight)."""
        while True:
            tasks = list(self._tasks.values())
            if include_edge_sync:
                tasks.extend(self._background)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self):
        """Stop admitting work and wait for running jobs.

        Pending jobs stay in the journal and are picked up by ``recover``.
        """
        self._closed = True
        with self._lock:
            self._pending.clear()
        await self.drain(include_edge_sync=False)

    # ============================================================
    # ADMISSION
    # ============================================================

    def _admit(self):
        if self._closed:
            return

        started: List[Job] = []
        with self._lock:
            while len(self._processing) < self.max_concurrent and self._pending:
                job = self._pending.popleft()
                self._processing[job.video_id] = job
                started.append(job)
            waiting = len(self._pending)
            active = len(self._processing)

        if not started and waiting:
            logger.debug("queue_at_capacity", active_jobs=active, max_concurrent=self.max_concurrent, pending=waiting)

        loop = asyncio.get_running_loop()
        for job in started:
            logger.info(
                "job_started",
                video_id=job.video_id,
                active_jobs=active,
                max_concurrent=self.max_concurrent,
            )
            self._tasks[job.video_id] = loop.create_task(self._execute(job))

    async def _execute(self, job: Job):
        try:
            await self._process(job)
        except Exception as e:
            # Store failures inside a job must not stall the queue
            logger.error("job_crashed", error=e, video_id=job.video_id)
        finally:
            with self._lock:
                self._processing.pop(job.video_id, None)
                self._tasks.pop(job.video_id, None)
                self._progress.pop(job.video_id, None)
            self._settled.discard(job.video_id)
            self._progress_writes.pop(job.video_id, None)
            self._forget(job.video_id)
            self._admit()

    def _forget(self, video_id: str):
        if self._journal is None:
            return
        try:
            self._journal.remove(video_id)
        except Exception as e:
            logger.error("journal_remove_failed", error=e, video_id=video_id)

    # ============================================================
    # JOB EXECUTION
    # ============================================================

    async def _process(self, job: Job):
        if not await asyncio.to_thread(self._store.mark_processing, job.video_id):
            logger.warning("job_video_missing", video_id=job.video_id)
            return

        output_dir = processed_dir_for(self.processed_root, job.video_id)
        work = self._start_transcode(job, output_dir)

        try:
            if self.job_timeout:
                result = await asyncio.wait_for(asyncio.shield(work), self.job_timeout)
            else:
                result = await work
        except asyncio.TimeoutError:
            await self._fail(job, f"Processing timed out after {self.job_timeout:g}s")
            await self._abandon(job, work)
            return
        except Exception as e:
            await self._fail(job, str(e) or type(e).__name__)
            return

        await self._succeed(job, result, output_dir)

    def _start_transcode(self, job: Job, output_dir: Path) -> asyncio.Future:
        loop = asyncio.get_running_loop()

        def progress(percent: int, message: str = ""):
            # May be called from the transcoder's worker thread
            loop.call_soon_threadsafe(self._on_progress, job.video_id, percent, message)

        process = self._transcoder.process
        if asyncio.iscoroutinefunction(process):
            return asyncio.ensure_future(process(job.video_id, job.input_path, str(output_dir), progress))
        return asyncio.ensure_future(
            asyncio.to_thread(process, job.video_id, job.input_path, str(output_dir), progress)
        )

    async def _abandon(self, job: Job, work: asyncio.Future):
        # Threads cannot be interrupted: the slot stays taken until the encode returns
        if asyncio.iscoroutinefunction(self._transcoder.process):
            work.cancel()
        await asyncio.wait({work})
        if not work.cancelled() and work.exception() is not None:
            logger.warning("timed_out_job_failed", video_id=job.video_id, error=str(work.exception()))

    def _on_progress(self, video_id: str, percent: int, message: str):
        if video_id not in self._processing or video_id in self._settled:
            return
        percent = max(0, min(100, int(percent)))
        if percent <= self._progress.get(video_id, 0):
            return
        self._progress[video_id] = percent

        write = asyncio.get_running_loop().create_task(asyncio.to_thread(self._write_progress, video_id, percent))
        writes = self._progress_writes.setdefault(video_id, set())
        writes.add(write)
        write.add_done_callback(writes.discard)

        self._publish("processingProgress", {
            "videoId": video_id,
            "progress": percent,
            "message": message,
            "timestamp": _now().isoformat(),
        })

    def _write_progress(self, video_id: str, percent: int):
        try:
            self._store.update_progress(video_id, percent)
        except Exception as e:
            logger.error("progress_update_failed", error=e, video_id=video_id)

    async def _settle(self, video_id: str):
        """Stop accepting progress for a job and flush writes already in flight."""
        self._settled.add(video_id)
        writes = list(self._progress_writes.get(video_id, ()))
        if writes:
            await asyncio.gather(*writes, return_exceptions=True)

    async def _succeed(self, job: Job, result: TranscodeResult, output_dir: Path):
        await self._settle(job.video_id)
        await asyncio.to_thread(
            self._store.mark_ready,
            job.video_id,
            duration=result.duration,
            resolution=result.resolution,
            file_size=result.file_size,
            processed_files=result.processed_files,
        )
        logger.info("job_completed", video_id=job.video_id, duration=result.duration, resolution=result.resolution)

        self._publish("processingComplete", {
            "videoId": job.video_id,
            "status": "ready",
            "timestamp": _now().isoformat(),
        })
        self._start_edge_sync(job, output_dir)

    async def _fail(self, job: Job, message: str):
        await self._settle(job.video_id)
        await asyncio.to_thread(self._store.mark_error, job.video_id, message)
        logger.warning("job_failed", video_id=job.video_id, error=message)

        self._publish("processingError", {
            "videoId": job.video_id,
            "error": message,
            "timestamp": _now().isoformat(),
        })

    def _publish(self, event: str, payload: Dict[str, Any]):
        if self._notifier is None:
            return
        try:
            self._notifier.publish(event, payload)
        except Exception as e:
            logger.error("notify_failed", error=e, event=event)

    # ============================================================
    # EDGE SYNC (fire and forget)
    # ============================================================

    def _start_edge_sync(self, job: Job, output_dir: Path):
        if self._edge_sync is None:
            return

        task = asyncio.get_running_loop().create_task(
            self._edge_sync.sync_video_to_edges(job.video_id, job.input_path, str(output_dir))
        )
        self._background.add(task)

        def _done(t: asyncio.Task):
            self._background.discard(t)
            if t.cancelled():
                return
            if t.exception() is not None:
                logger.error("edge_sync_failed", error=t.exception(), video_id=job.video_id)
            else:
                result = t.result() or {}
                logger.info(
                    "edge_sync_finished",
                    video_id=job.video_id,
                    synced=result.get("synced"),
                    failed=result.get("failed"),
                )

        task.add_done_callback(_done)

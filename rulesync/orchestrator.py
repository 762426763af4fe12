#!/usr/bin/env python3
"""
orchestrator.py - Refresh Cycle over All Rule-List Items

Runs one fetch task per enabled item, collects progress and errors in a
RefreshState, and returns a RefreshReport once every dispatched task has
finished.

Cancellation is cooperative: cancel() only stops further dispatch. Fetches
already running are never interrupted, and since every write goes through
an AtomicReplaceFile no half-written mirror can be left behind either way.

Items that share a location are fetched once. The later ones finish when
the first one does, so two writers never race for the same mirror.

Usage:
    python -m rulesync --sources sources.json --outdir mirrors/
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

import aiohttp

from rulesync.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_LIVENESS_INTERVAL,
    DEFAULT_READ_TIMEOUT,
    RefreshConfig,
)
from rulesync.errors import PoolStartupError
from rulesync.fetcher import ItemFetcher, PermissionRequester
from rulesync.mirror import MirrorResolver, load_items
from rulesync.models import Item, RefreshJob, RefreshReport
from rulesync.state import ProgressSink, RefreshState

logger = logging.getLogger(__name__)

SessionFactory = Callable[[RefreshConfig], aiohttp.ClientSession]


def default_session(config: RefreshConfig) -> aiohttp.ClientSession:
    """HTTP session with no connection cap beyond max_workers."""
    connector = aiohttp.TCPConnector(limit=config.max_workers or 0)
    return aiohttp.ClientSession(connector=connector)


class RefreshOrchestrator:
    """
    Refreshes the local mirrors of a set of items concurrently.

    Args:
        config: Engine settings (mirror directory, timeouts, pool size)
        permissions: Grant requester for content references
        progress: Called with (total, remaining, remaining_titles)
        resolver: location -> mirror path mapping, defaults to config.mirror_dir
        session_factory: Builds the HTTP session for a cycle
    """

    def __init__(
        self,
        config: RefreshConfig,
        permissions: PermissionRequester | None = None,
        progress: ProgressSink | None = None,
        resolver: MirrorResolver | None = None,
        session_factory: SessionFactory = default_session,
    ) -> None:
        self.config = config
        self.permissions = permissions
        self.progress = progress
        self.resolver = resolver or MirrorResolver(config.mirror_dir)
        self.session_factory = session_factory
        self.state: RefreshState | None = None
        self._cancelled = threading.Event()

    # -------------------------------------------------------------------------
    # Public interface
    # -------------------------------------------------------------------------

    def start(self, job: RefreshJob | Iterable[Item]) -> RefreshReport:
        """Run a full cycle, blocking until every dispatched item finished."""
        return asyncio.run(self.run(job))

    def cancel(self) -> None:
        """Stop dispatching further items. Safe to call from any thread."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def run(self, job: RefreshJob | Iterable[Item]) -> RefreshReport:
        """Coroutine version of start() for callers with a running loop."""
        if not isinstance(job, RefreshJob):
            job = RefreshJob.of(job)
        enabled = job.enabled_items
        skipped = [item.title for item in job.items if not item.enabled]

        self.state = RefreshState([item.title for item in enabled], self.progress)
        logger.info(
            "Refreshing %d item(s), %d disabled", len(enabled), len(skipped)
        )

        try:
            session = self.session_factory(self.config)
        except Exception as e:
            raise PoolStartupError(f"Could not start refresh: {e}") from e

        async with session:
            fetcher = ItemFetcher(
                session, self.config, self.resolver, self.permissions,
                writes=self.resolver.writes,
            )
            tasks = await self._dispatch(fetcher, enabled)
            await self._drain(tasks)

        _, done, errors = self.state.snapshot()
        report = RefreshReport(
            errors=errors,
            done=done,
            skipped=skipped,
            cancelled=list(self.state.withdrawn),
        )
        logger.info(
            "Refresh finished: %d done, %d error(s), %d cancelled",
            len(report.done), len(report.errors), len(report.cancelled),
        )
        return report

    # -------------------------------------------------------------------------
    # Callbacks from fetch tasks
    # -------------------------------------------------------------------------

    def on_item_finished(self, title: str) -> None:
        self.state.finish(title)

    def on_item_error(self, title: str, message: str) -> None:
        self.state.add_error(title, message)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _dispatch(
        self,
        fetcher: ItemFetcher,
        items: Sequence[Item],
    ) -> list[asyncio.Task]:
        semaphore = asyncio.Semaphore(self.config.max_workers) if self.config.max_workers else None
        tasks: list[asyncio.Task] = []
        # One fetch per location; later items with the same location wait for it.
        fetches: dict[str, asyncio.Task] = {}

        for index, item in enumerate(items):
            primary = fetches.get(item.location)
            if primary is None and semaphore is not None:
                await semaphore.acquire()
            if self.cancelled:
                if primary is None and semaphore is not None:
                    semaphore.release()
                for rest in items[index:]:
                    self.state.withdraw(rest.title)
                logger.info(
                    "Refresh cancelled, %d item(s) not dispatched", len(items) - index
                )
                break

            if primary is not None:
                logger.info(
                    "%s: same location as an earlier item, not fetched again", item.title
                )
                tasks.append(asyncio.create_task(
                    self._follow(primary, item.title), name=f"refresh:{item.title}"
                ))
                continue

            task = asyncio.create_task(fetcher.run(item, self), name=f"refresh:{item.title}")
            if semaphore is not None:
                task.add_done_callback(lambda _task: semaphore.release())
            fetches[item.location] = task
            tasks.append(task)

        return tasks

    async def _follow(self, primary: asyncio.Task, title: str) -> None:
        await asyncio.wait([primary])
        self.state.finish(title)

    async def _drain(self, tasks: list[asyncio.Task]) -> None:
        pending = set(tasks)
        while pending:
            _, pending = await asyncio.wait(pending, timeout=self.config.liveness_interval)
            if pending:
                remaining, _, _ = self.state.snapshot()
                logger.info(
                    "Still waiting for %d item(s): %s", len(remaining), ", ".join(remaining)
                )


# =============================================================================
# COMMAND LINE
# =============================================================================

def setup_logging(log_level: str = "INFO") -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.INFO)


def print_progress(total: int, remaining: int, titles: list[str]) -> None:
    current = ", ".join(titles[:3]) + (" ..." if len(titles) > 3 else "")
    print(f"   [{total - remaining}/{total}] {current}", flush=True)


async def _run_until_interrupted(orchestrator: RefreshOrchestrator, job: RefreshJob) -> RefreshReport:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except (NotImplementedError, RuntimeError):
        pass
    return await orchestrator.run(job)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Refresh local mirrors of rule lists")
    parser.add_argument("--sources", required=True, help="Sources file (.json items or one URL per line)")
    parser.add_argument("--outdir", required=True, help="Directory for the local mirrors")
    parser.add_argument("--concurrency", type=int, default=None, help="Max concurrent downloads (default: one per item)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_CONNECT_TIMEOUT, help="Connect timeout in seconds")
    parser.add_argument("--read-timeout", type=float, default=DEFAULT_READ_TIMEOUT, help="Read timeout in seconds")
    parser.add_argument("--liveness", type=float, default=DEFAULT_LIVENESS_INTERVAL, help="Seconds between progress log lines")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    items = load_items(args.sources)
    if not items:
        print("No items found in sources file", file=sys.stderr)
        return 1

    try:
        config = RefreshConfig(
            mirror_dir=Path(args.outdir),
            connect_timeout=args.timeout,
            read_timeout=args.read_timeout,
            max_workers=args.concurrency,
            liveness_interval=args.liveness,
        )
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    job = RefreshJob.of(items)
    orchestrator = RefreshOrchestrator(config, progress=print_progress)

    print(f"🔄 Refreshing {len(job.enabled_items)} of {len(job.items)} sources...")
    start_time = time.time()
    try:
        report = asyncio.run(_run_until_interrupted(orchestrator, job))
    except PoolStartupError as e:
        print(f"❌ ERROR: {e}", file=sys.stderr)
        return 2

    failed = len(report.errors)
    print(
        f"✅ Finished: {len(report.done) - failed}/{len(job.enabled_items)} "
        f"({time.time() - start_time:.1f}s)"
    )
    if report.cancelled:
        print(f"⏹️  Cancelled before start: {len(report.cancelled)}")
    if failed > 0:
        print(f"⚠️  Failed: {failed}")
        for entry in report.errors:
            print(f"   - {entry}")

    # Return error if too many failures (>50%)
    if failed > len(job.enabled_items) // 2:
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

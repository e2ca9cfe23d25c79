"""
Module Event Processor
Flow: Install / uninstall notification → Queue → Single worker → Loader → Next event

Notifications arrive asynchronously from the module host. One worker applies
them strictly in arrival order, so a module's unregister always finishes
before a later register of the same module id starts.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, List, Optional

from .logging import get_logger
from .module_loader import InstalledModuleInfo, ModuleLoader, ModuleLoadReport

logger = get_logger(__name__)


class ModuleEventType(str, Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    UPDATE = "update"


@dataclass
class ModuleEvent:
    """One install/uninstall/update notification."""
    type: ModuleEventType
    module_id: str
    module: Optional[InstalledModuleInfo] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ProcessedModuleEvent:
    event: ModuleEvent
    report: Optional[ModuleLoadReport] = None
    removed: List[str] = field(default_factory=list)
    error: Optional[str] = None


class ModuleEventProcessor:
    """
    Serializes module notifications for one loader.

    Process:
    1. install() / uninstall() / update() → enqueue
    2. _worker() → take one event, apply it fully, mark done
    3. drain() → wait until every queued event has been applied
    """

    def __init__(self, loader: ModuleLoader, max_queue_size: int = 0, keep_processed: int = 100):
        self.loader = loader
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker_task: Optional[asyncio.Task] = None
        # Most recent outcomes only
        self.processed: Deque[ProcessedModuleEvent] = deque(maxlen=keep_processed)
        self.logger = logger.bind(module="module_events")

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    async def start(self) -> None:
        """Start the worker task."""
        if self.is_running:
            return
        self._worker_task = asyncio.create_task(self._worker())
        self.logger.info("Module event processor started")

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker, optionally applying queued events first."""
        if drain and self.is_running:
            await self.drain()
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        self.logger.info("Module event processor stopped", pending=self._queue.qsize())

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, event: ModuleEvent) -> None:
        await self._queue.put(event)
        self.logger.debug("Module event queued", event_type=event.type.value, module_id=event.module_id)

    async def install(self, module: InstalledModuleInfo) -> None:
        await self.publish(ModuleEvent(type=ModuleEventType.INSTALL, module_id=module.id, module=module))

    async def uninstall(self, module_id: str) -> None:
        await self.publish(ModuleEvent(type=ModuleEventType.UNINSTALL, module_id=module_id))

    async def update(self, module: InstalledModuleInfo) -> None:
        await self.publish(ModuleEvent(type=ModuleEventType.UPDATE, module_id=module.id, module=module))

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def _worker(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.processed.append(await self._apply(event))
            except Exception as e:
                # Keep the worker alive for the events behind this one
                self.logger.error(
                    "Module event failed",
                    event_type=event.type.value,
                    module_id=event.module_id,
                    error=str(e),
                )
                self.processed.append(ProcessedModuleEvent(event=event, error=str(e)))
            finally:
                self._queue.task_done()

    async def _apply(self, event: ModuleEvent) -> ProcessedModuleEvent:
        if event.type == ModuleEventType.UNINSTALL:
            removed = self.loader.unload_module(event.module_id)
            return ProcessedModuleEvent(event=event, removed=removed)

        if event.module is None:
            raise ValueError(f"{event.type.value} event for '{event.module_id}' carries no module info")

        if event.type == ModuleEventType.INSTALL:
            report = await self.loader.load_module(event.module)
        else:
            report = await self.loader.reload_module(event.module)

        self.logger.info(
            "Module event applied",
            event_type=event.type.value,
            module_id=event.module_id,
            loaded=report.loaded,
            failed=report.failed_module_names(),
        )
        return ProcessedModuleEvent(event=event, report=report)

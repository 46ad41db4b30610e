"""
后台执行池模块 (Background Execution Pool Module)

为告警事件分发和监控信号摄取提供有界的异步 worker 池，与请求处理路径隔离。
不包含任何业务知识。

行为与线程池执行器一致 (Mirrors a thread-pool executor):
  - 常驻 core_size 个 worker 消费有界队列
  - 队列满时临时扩容到 max_size，任务直接交给新 worker
  - 扩容也到顶时拒绝任务并记录日志，不排队、不在提交方执行
  - 临时 worker 空闲 keep_alive 秒后退出
  - 关闭时停止接收新任务，最多等待 shutdown_timeout 秒，然后强制取消剩余任务
"""
import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Optional

from netwatch.core.config import settings

logger = logging.getLogger(__name__)

TaskFn = Callable[..., Awaitable[Any]]


class _Job:
    __slots__ = ("fn", "args", "kwargs")

    def __init__(self, fn: TaskFn, args: tuple, kwargs: dict):
        self.fn = fn
        self.args = args
        self.kwargs = kwargs

    @property
    def label(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


class AsyncExecutionPool:
    """有界异步执行池 (Bounded asynchronous execution pool)"""

    def __init__(
        self,
        name: str = "netwatch-worker",
        core_size: int = 5,
        max_size: int = 20,
        queue_capacity: int = 100,
        keep_alive: float = 60.0,
        shutdown_timeout: float = 60.0,
    ):
        if core_size < 1:
            raise ValueError("core_size must be at least 1")
        if max_size < core_size:
            raise ValueError("max_size must be >= core_size")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be at least 1")
        self.name = name
        self._core_size = core_size
        self._max_size = max_size
        self._queue_capacity = queue_capacity
        self._keep_alive = keep_alive
        self._shutdown_timeout = shutdown_timeout

        self._queue: Optional[asyncio.Queue] = None
        self._idle: Optional[asyncio.Event] = None
        self._workers: set[asyncio.Task] = set()
        self._accepting = False
        self._unfinished = 0
        self._rejected = 0
        self._seq = itertools.count(1)

    @classmethod
    def from_settings(cls, name: str = "netwatch-worker") -> "AsyncExecutionPool":
        return cls(
            name=name,
            core_size=settings.worker_pool_core_size,
            max_size=settings.worker_pool_max_size,
            queue_capacity=settings.worker_pool_queue_capacity,
            keep_alive=settings.worker_pool_keep_alive_seconds,
            shutdown_timeout=settings.worker_pool_shutdown_timeout_seconds,
        )

    # ── 状态 (State) ──

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def rejected_count(self) -> int:
        return self._rejected

    # ── 生命周期 (Lifecycle) ──

    def start(self) -> None:
        """启动常驻 worker，必须在事件循环内调用。(Start core workers; needs a running loop.)"""
        if self._accepting:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_capacity)
        self._idle = asyncio.Event()
        self._idle.set()
        self._unfinished = 0
        self._accepting = True
        for _ in range(self._core_size):
            self._spawn(core=True)
        logger.info(
            "Execution pool %s started (core=%d, max=%d, queue=%d)",
            self.name, self._core_size, self._max_size, self._queue_capacity,
        )

    def submit(self, fn: TaskFn, *args: Any, **kwargs: Any) -> bool:
        """
        提交异步任务，立即返回是否被接收 (Submit a coroutine function; returns whether it was accepted)

        从不阻塞调用方，也从不在调用方上下文中执行任务。
        """
        job = _Job(fn, args, kwargs)
        if not self._accepting:
            self._reject(job, "pool is not running")
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            if len(self._workers) >= self._max_size:
                self._reject(job, "queue full and pool at max size")
                return False
            self._track()
            self._spawn(core=False, first=job)
            return True
        self._track()
        return True

    async def join(self) -> None:
        """等待所有已接收任务执行完毕。(Wait until every accepted task has finished.)"""
        if self._idle is not None:
            await self._idle.wait()

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        关闭执行池 (Shut the pool down)

        停止接收新任务，最多等待 timeout 秒让在途任务完成，之后取消剩余 worker。
        """
        if self._queue is None:
            return
        self._accepting = False
        timeout = self._shutdown_timeout if timeout is None else timeout
        logger.info(
            "Shutting down execution pool %s (%d queued, %d unfinished)",
            self.name, self._queue.qsize(), self._unfinished,
        )
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Execution pool %s did not drain within %.1fs, terminating %d unfinished task(s)",
                self.name, timeout, self._unfinished,
            )

        workers = list(self._workers)
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.warning("Execution pool %s discarded %d queued task(s) on shutdown", self.name, dropped)

        self._queue = None
        self._unfinished = 0
        self._idle.set()
        logger.info("Execution pool %s stopped", self.name)

    # ── 内部实现 (Internals) ──

    def _track(self) -> None:
        self._unfinished += 1
        self._idle.clear()

    def _finish(self) -> None:
        self._unfinished -= 1
        if self._unfinished <= 0:
            self._unfinished = 0
            self._idle.set()

    def _reject(self, job: _Job, reason: str) -> None:
        self._rejected += 1
        logger.warning("Task %s rejected by execution pool %s: %s", job.label, self.name, reason)

    def _spawn(self, core: bool, first: Optional[_Job] = None) -> None:
        worker = asyncio.create_task(
            self._worker_loop(core, first), name=f"{self.name}-{next(self._seq)}"
        )
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)

    async def _worker_loop(self, core: bool, first: Optional[_Job]) -> None:
        queue = self._queue
        if first is not None:
            await self._run(first)
        while True:
            try:
                if core:
                    job = await queue.get()
                else:
                    job = await asyncio.wait_for(queue.get(), timeout=self._keep_alive)
            except asyncio.TimeoutError:
                # 临时 worker 空闲超时退出
                return
            try:
                await self._run(job)
            finally:
                queue.task_done()

    async def _run(self, job: _Job) -> None:
        try:
            await job.fn(*job.args, **job.kwargs)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Task %s failed in execution pool %s", job.label, self.name)
        finally:
            self._finish()


# 全局执行池实例，在应用 lifespan 中启动和关闭 (Global pool, started and stopped by the app lifespan)
execution_pool = AsyncExecutionPool.from_settings()

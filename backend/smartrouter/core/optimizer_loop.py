import asyncio
from typing import Awaitable, Callable

from smartrouter.core.state import LastOptimization
from smartrouter.errors import SmartRouterError
from smartrouter.observability.logger import get_logger
from smartrouter.optimization.applier import ActionApplier
from smartrouter.optimization.models import ActionResult
from smartrouter.optimization.optimizer import Optimizer

log = get_logger("optimizer_loop")


class AutoOptimizer:
    """Periodically generates a plan and applies its reversible actions.

    Cycles never overlap. `stop()` waits for an in-flight cycle to finish so
    the final state flush sees its writes.
    """

    def __init__(
        self, ctx,
        optimizer: Optimizer,
        applier: ActionApplier,
        save_state: Callable[[], Awaitable[None]],
        interval_seconds: float,
    ):
        self.ctx = ctx
        self.optimizer = optimizer
        self.applier = applier
        self.save_state = save_state
        self.interval = interval_seconds
        self._stop = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self._task is not None:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="auto_optimizer")
        log.info("auto_optimizer_started", interval_seconds=self.interval)

    async def stop(self):
        self._stop.set()
        if self._task:
            try:
                await self._task
            except Exception as e:
                log.error("auto_optimizer_crashed", error=str(e))
            self._task = None
        log.info("auto_optimizer_stopped")

    async def _run(self):
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_cycle()
            except SmartRouterError as e:
                log.error("auto_optimization_failed", error=str(e))
            except Exception:
                # Storage and plan bugs must not end the loop
                log.exception("auto_optimization_failed")

    async def run_cycle(self) -> list[ActionResult]:
        if self._cycle_lock.locked():
            log.debug("auto_optimization_skipped", reason="cycle_in_progress")
            return []

        async with self._cycle_lock:
            plan = self.optimizer.generate_plan()
            plan = self.optimizer.filter_plan(plan, "safe-only")
            if not plan.actions:
                log.debug("auto_optimization_nothing_to_do")
                return []

            log.info("auto_optimization_applying", plan_id=plan.id, actions=len(plan.actions))
            results = await self.applier.apply_plan(plan)

            self.ctx.state.last_optimization = LastOptimization(
                timestamp=self.ctx.now(),
                plan_id=plan.id,
                applied=any(r.status == "applied" for r in results),
                savings=plan.total_estimated_savings,
            )
            self.ctx.state_changed()
            await self.save_state()
            return results

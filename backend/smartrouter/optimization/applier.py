from smartrouter.context import RouterContext
from smartrouter.errors import StoreIOError, TargetNotFound, UnsupportedOperation
from smartrouter.optimization.models import ActionResult, OptimizationAction, OptimizationPlan
from smartrouter.stores.agents import AgentStore
from smartrouter.stores.jobs import JobStore


def _primary_key(config: dict) -> str:
    # Agents written by hand sometimes use "model" instead of "primary"
    if "primary" not in config and "model" in config:
        return "model"
    return "primary"


class ActionApplier:
    """Executes plan actions against the job and agent stores.

    In preview mode nothing is read or written; every action is reported as
    applied with the rollback information its payload implies. In live mode
    each action is one locked read-modify-write, and the first failure stops
    the rest of the plan.
    """

    def __init__(self, ctx: RouterContext, jobs: JobStore, agents: AgentStore, preview: bool = True):
        self.ctx = ctx
        self.jobs = jobs
        self.agents = agents
        self.preview = preview
        self.log = ctx.get_logger("optimization.applier")

    async def apply_plan(self, plan: OptimizationPlan) -> list[ActionResult]:
        results = []
        for action in plan.actions:
            result = await self.apply_action(action)
            results.append(result)
            if not self.preview and result.status == "failed":
                self.log.error("plan_halted", plan_id=plan.id, action=action.type,
                               target=action.target.id, error=result.error)
                break

        applied = sum(1 for r in results if r.status == "applied")
        self.log.info("plan_applied", plan_id=plan.id, preview=self.preview,
                      applied=applied, total=len(plan.actions))
        return results

    async def apply_action(self, action: OptimizationAction) -> ActionResult:
        if self.preview:
            return self._simulate(action)

        handlers = {
            "change_model": self._change_model,
            "route_to_local": self._route_to_local,
            "add_fallback": self._add_fallback,
            "remove_fallback": self._remove_fallback,
            "split_job": self._split_job,
        }
        try:
            rollback_info = await handlers[action.type](action)
        except UnsupportedOperation as e:
            return ActionResult(action=action, status="skipped", error=str(e))
        except (TargetNotFound, StoreIOError) as e:
            return ActionResult(action=action, status="failed", error=str(e))

        self.log.info("action_applied", action=action.type, target=action.target.id, kind=action.target.kind)
        return ActionResult(action=action, status="applied", rollback_info=rollback_info)

    def _simulate(self, action: OptimizationAction) -> ActionResult:
        changes = action.changes
        rollback_info = None
        if action.type in ("change_model", "route_to_local"):
            rollback_info = {"from": changes.get("from"), "to": changes.get("to")}
        elif action.type == "add_fallback":
            rollback_info = {"model": changes.get("model"), "position": changes.get("position", 0), "inserted": True}
        elif action.type == "remove_fallback":
            rollback_info = {"model": changes.get("model"), "position": None}

        self.log.info("action_previewed", action=action.type, target=action.target.id, description=action.description)
        return ActionResult(action=action, status="applied", rollback_info=rollback_info, preview=True)

    # Live handlers return the rollback info for the change they made

    async def _set_job_model(self, job_id: str, model: str) -> str | None:
        def mutate(job: dict):
            previous = job.get("model")
            job["model"] = model
            return previous

        return await self.jobs.update(job_id, mutate)

    async def _set_agent_primary(self, agent_id: str, model: str) -> str | None:
        def mutate(config: dict):
            key = _primary_key(config)
            previous = config.get(key)
            config[key] = model
            return previous

        return await self.agents.update(agent_id, mutate)

    async def _change_model(self, action: OptimizationAction) -> dict:
        to = action.changes["to"]
        if action.target.kind == "job":
            previous = await self._set_job_model(action.target.id, to)
        else:
            previous = await self._set_agent_primary(action.target.id, to)
        return {"from": previous, "to": to}

    async def _route_to_local(self, action: OptimizationAction) -> dict:
        if action.target.kind != "job":
            raise UnsupportedOperation("route_to_local only supported for jobs")
        to = action.changes["to"]
        previous = await self._set_job_model(action.target.id, to)
        return {"from": previous, "to": to}

    async def _add_fallback(self, action: OptimizationAction) -> dict:
        if action.target.kind != "agent":
            raise UnsupportedOperation("add_fallback only supported for agents")
        model = action.changes["model"]
        position = action.changes.get("position", 0)

        def mutate(config: dict):
            fallbacks = config["fallbacks"]
            if model in fallbacks:
                return {"model": model, "position": fallbacks.index(model), "inserted": False}
            index = max(0, min(position, len(fallbacks)))
            fallbacks.insert(index, model)
            return {"model": model, "position": index, "inserted": True}

        return await self.agents.update(action.target.id, mutate)

    async def _remove_fallback(self, action: OptimizationAction) -> dict:
        if action.target.kind != "agent":
            raise UnsupportedOperation("remove_fallback only supported for agents")
        model = action.changes["model"]

        def mutate(config: dict):
            fallbacks = config["fallbacks"]
            if model not in fallbacks:
                return {"model": model, "position": None}
            index = fallbacks.index(model)
            config["fallbacks"] = [f for f in fallbacks if f != model]
            return {"model": model, "position": index}

        return await self.agents.update(action.target.id, mutate)

    async def _split_job(self, action: OptimizationAction) -> dict:
        raise UnsupportedOperation("Job splitting not supported live - manual intervention required")

    async def rollback(self, result: ActionResult) -> ActionResult:
        """Apply the exact inverse of a live-applied reversible result."""
        action = result.action
        if result.preview or result.status != "applied" or not action.reversible or not result.rollback_info:
            return ActionResult(action=action, status="skipped", error="Nothing to roll back")

        info = result.rollback_info
        if action.type in ("change_model", "route_to_local"):
            inverse = action.model_copy(update={
                "description": f"Roll back: {action.description}",
                "changes": {**action.changes, "from": info["to"], "to": info["from"]},
            })
            if action.type == "route_to_local":
                inverse = inverse.model_copy(update={"type": "change_model"})
        elif action.type == "add_fallback":
            if not info.get("inserted"):
                return ActionResult(action=action, status="skipped", error="Fallback was already present")
            inverse = action.model_copy(update={
                "type": "remove_fallback",
                "description": f"Roll back: {action.description}",
                "changes": {"model": info["model"]},
            })
        elif action.type == "remove_fallback":
            if info.get("position") is None:
                return ActionResult(action=action, status="skipped", error="Fallback was not present")
            inverse = action.model_copy(update={
                "type": "add_fallback",
                "description": f"Roll back: {action.description}",
                "changes": {"model": info["model"], "position": info["position"]},
            })
        else:
            return ActionResult(action=action, status="skipped", error=f"{action.type} cannot be rolled back")

        if inverse.type == "change_model" and info.get("from") is None:
            # The target had no model set before; restore by removing the key
            rolled = await self._clear_model(inverse)
        else:
            live = ActionApplier(self.ctx, self.jobs, self.agents, preview=False)
            rolled = await live.apply_action(inverse)

        self.log.info("action_rolled_back", action=action.type, target=action.target.id, status=rolled.status)
        return rolled

    async def _clear_model(self, action: OptimizationAction) -> ActionResult:
        def clear_job(job: dict):
            previous = job.pop("model", None)
            return {"from": previous, "to": None}

        def clear_agent(config: dict):
            key = _primary_key(config)
            previous = config.pop(key, None)
            return {"from": previous, "to": None}

        try:
            if action.target.kind == "job":
                info = await self.jobs.update(action.target.id, clear_job)
            else:
                info = await self.agents.update(action.target.id, clear_agent)
        except (TargetNotFound, StoreIOError) as e:
            return ActionResult(action=action, status="failed", error=str(e))
        return ActionResult(action=action, status="applied", rollback_info=info)

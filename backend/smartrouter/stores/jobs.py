import asyncio
import json
import os
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from smartrouter.errors import StoreIOError, TargetNotFound
from smartrouter.observability.logger import get_logger
from smartrouter.stores.files import read_json, write_json_atomic

log = get_logger("stores.jobs")


class CronJob(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    schedule: str = "* * * * *"
    model: str | None = None
    prompt: str = ""
    enabled: bool = True


class RunRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timestamp: datetime | float | None = None
    tokens_in: int = Field(default=0, alias="tokensIn")
    tokens_out: int = Field(default=0, alias="tokensOut")
    duration_ms: float = Field(default=0.0, alias="durationMs")
    success: bool = True
    error: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


def _job_entries(data: Any) -> list[dict]:
    """The job list in any of the three accepted layouts."""
    if isinstance(data, list):
        return [j for j in data if isinstance(j, dict)]
    if isinstance(data, dict):
        if isinstance(data.get("jobs"), list):
            return [j for j in data["jobs"] if isinstance(j, dict)]
        return [v for v in data.values() if isinstance(v, dict) and "id" in v]
    return []


def _find_job(data: Any, job_id: str) -> dict | None:
    if isinstance(data, dict) and "jobs" not in data and isinstance(data.get(job_id), dict):
        return data[job_id]
    for job in _job_entries(data):
        if job.get("id") == job_id:
            return job
    return None


class JobStore:
    """The scheduled-job file.

    Reads are lenient and return nothing on a missing or broken file. Writes
    go through `update`, which holds the store lock for the whole
    read-modify-write so two changes never interleave.
    """

    def __init__(self, path: str):
        self.path = path
        self.lock = asyncio.Lock()

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load_jobs(self) -> list[CronJob]:
        if not self.exists():
            log.debug("jobs_file_missing", path=self.path)
            return []
        try:
            data = read_json(self.path)
        except StoreIOError as e:
            log.error("jobs_file_unreadable", path=self.path, error=str(e))
            return []

        jobs = []
        for entry in _job_entries(data):
            try:
                jobs.append(CronJob.model_validate(entry))
            except ValidationError as e:
                log.warning("job_entry_invalid", job_id=entry.get("id"), error=str(e))
        return jobs

    def get(self, job_id: str) -> CronJob | None:
        return next((j for j in self.load_jobs() if j.id == job_id), None)

    async def update(self, job_id: str, mutate: Callable[[dict], Any]) -> Any:
        """Apply `mutate` to the raw job entry and persist the file atomically.

        Returns whatever `mutate` returns. Raises TargetNotFound when the job
        is absent and StoreIOError on read or write failure; the file is left
        untouched in both cases.
        """
        async with self.lock:
            if not self.exists():
                raise StoreIOError(f"jobs file not found: {self.path}")
            data = read_json(self.path)
            job = _find_job(data, job_id)
            if job is None:
                raise TargetNotFound("job", job_id)
            result = mutate(job)
            write_json_atomic(self.path, data)
            return result


class RunLog:
    """Per-job JSONL run history. Read only."""

    def __init__(self, runs_dir: str):
        self.runs_dir = runs_dir

    def load(self, job_id: str) -> list[RunRecord]:
        if not os.path.isdir(self.runs_dir):
            return []

        path = os.path.join(self.runs_dir, f"{job_id}.jsonl")
        if not os.path.isfile(path):
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            log.debug("run_history_unreadable", job_id=job_id, error=str(e))
            return []

        records = []
        for line in lines:
            if not line.strip():
                continue
            try:
                records.append(RunRecord.model_validate(json.loads(line)))
            except (ValueError, ValidationError):
                continue
        return records

"""Independent runs distributed over a process pool.

Every job builds its own runner, so no memory, registers, builtin state or hint
scopes are shared between runs.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from vm.config import RunConfig, RunInputs
from vm.program import Program
from vm.runner import RunResult, run_program

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunJob:
    """One program with its own config and inputs."""
    program: Program
    config: RunConfig = field(default_factory=RunConfig)
    inputs: RunInputs = field(default_factory=RunInputs)


def _execute(job: RunJob) -> RunResult:
    return run_program(job.program, job.config, job.inputs)


def run_many(jobs: Iterable[RunJob], max_workers: Optional[int] = None) -> List[RunResult]:
    """
    Run independent jobs in worker processes.

    Args:
        jobs: Jobs to run
        max_workers: Pool size (None lets the executor choose)

    Returns:
        One RunResult per job, in job order. Faulted runs are reported in their
        result; they do not affect the other jobs.
    """
    jobs = list(jobs)
    if not jobs:
        return []
    with ProcessPoolExecutor(max_workers=max_workers) as pool:
        results = list(pool.map(_execute, jobs))
    n_faulted = sum(1 for r in results if not r.ok)
    logger.info("Finished %d runs (%d faulted)", len(results), n_faulted)
    return results

"""
Worker module.
Contains the command executor, worker loop and worker pool.
"""

from cmdqueue.worker.executor import CommandExecutor, register_directive
from cmdqueue.worker.loop import WorkerLoop
from cmdqueue.worker.pool import WorkerPool

__all__ = [
    "CommandExecutor",
    "register_directive",
    "WorkerLoop",
    "WorkerPool",
]

"""
Job-related type definitions.
"""

from dataclasses import dataclass
from typing import Any

from disque_client.constants import JOB_ID_MARKERS, NODE_PREFIX_LENGTH


def job_node_prefix(job_id: str) -> str:
    """
    Get the prefix of the node that produced a job.

    Server-generated ids start with a two-character marker followed by the
    producing node's prefix; ids without a marker carry the prefix first.

    Args:
        job_id: The job identifier returned by ADDJOB.

    Returns:
        The 8-character node prefix.
    """
    for marker in JOB_ID_MARKERS:
        if job_id.startswith(marker):
            return job_id[len(marker) : len(marker) + NODE_PREFIX_LENGTH]
    return job_id[:NODE_PREFIX_LENGTH]


@dataclass(frozen=True)
class Job:
    """
    A job delivered by GETJOB.
    """

    queue: str
    id: str
    body: Any

    @property
    def node_prefix(self) -> str:
        """Prefix of the node that produced the job."""
        return job_node_prefix(self.id)

    @classmethod
    def from_reply(cls, item: list[Any]) -> "Job":
        """
        Build a job from one GETJOB reply entry.

        Entries are ``[queue, id, body, ...]``; trailing fields such as
        WITHCOUNTERS values are ignored.
        """
        queue, job_id, body = item[0], item[1], item[2]
        if isinstance(queue, bytes):
            queue = queue.decode("utf-8")
        if isinstance(job_id, bytes):
            job_id = job_id.decode("utf-8")
        return cls(queue=queue, id=job_id, body=body)

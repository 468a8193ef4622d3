"""
Worker topology.

Workers are grouped by machine. The first worker on each machine is its
leader; the rest are its subordinates:

    machines = {"node1": [0, 1, 2, 3], "node2": [4, 5]}
    leaders()         -> [0, 4]
    subordinates(0)   -> [1, 2, 3]
    subordinates(4)   -> [5]

A machine with a single worker uses that worker as both leader and
subordinate.
"""

import os
import socket
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np


@dataclass
class WorkerTopology:
    """Explicit worker layout, injected into the scheduler."""
    machines: Dict[str, List[int]]

    def __post_init__(self):
        if not self.machines:
            raise ValueError("WorkerTopology needs at least one machine")
        seen = set()
        for name, ids in self.machines.items():
            if not ids:
                raise ValueError(f"Machine '{name}' has no workers")
            dup = seen.intersection(ids)
            if dup or len(set(ids)) != len(ids):
                raise ValueError(f"Worker ids must be unique, duplicates on '{name}'")
            seen.update(ids)
        self.machines = {name: [int(i) for i in ids] for name, ids in self.machines.items()}

    @property
    def n_workers(self) -> int:
        return sum(len(ids) for ids in self.machines.values())

    def leaders(self) -> List[int]:
        return [ids[0] for ids in self.machines.values()]

    def machine_of(self, worker: int) -> str:
        for name, ids in self.machines.items():
            if worker in ids:
                return name
        raise KeyError(f"Worker {worker} is not in the topology")

    def subordinates(self, leader: int) -> List[int]:
        ids = list(self.machines[self.machine_of(leader)])
        if len(ids) > 1:
            ids.remove(leader)
        return ids

    @classmethod
    def local(cls, n_workers: Optional[int] = None, n_machines: int = 1) -> "WorkerTopology":
        """
        Topology for this host.

        Parameters
        ----------
        n_workers : int, optional
            Total worker count. Default os.cpu_count().
        n_machines : int
            Split the workers into this many groups, each with its own leader
        """
        n = n_workers if n_workers is not None else (os.cpu_count() or 1)
        if n < 1 or n_machines < 1:
            raise ValueError(f"Need at least one worker and one machine, got {n}, {n_machines}")
        if n < n_machines:
            raise ValueError(f"{n} workers cannot fill {n_machines} machines")
        host = socket.gethostname()
        if n_machines == 1:
            return cls({host: list(range(n))})
        groups = np.array_split(np.arange(n), n_machines)
        return cls({f"{host}-{i}": [int(w) for w in g] for i, g in enumerate(groups)})

    def __str__(self) -> str:
        lines = ["Workers:"]
        for name, ids in self.machines.items():
            lines.append(f"  {name}: leader {ids[0]}, subordinates {self.subordinates(ids[0])}")
        return "\n".join(lines)

from __future__ import annotations
from dataclasses import asdict, dataclass

@dataclass
class TaskRunStats:
    scanned: int = 0
    affected: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

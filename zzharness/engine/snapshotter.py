"""
Stats Snapshotter - periodic, immutable dumps of a run's counters.

Each snapshot is its own file, named after the run tag and the wall-clock
time down to microseconds, so snapshots of a run never overwrite each other.
Files are written to a temporary name and renamed into place; a reader never
sees a half-written snapshot.
"""
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import structlog

from zzharness.config import settings
from zzharness.models import Counters, SnapshotRecord

logger = structlog.get_logger()


class StatsSnapshotter:
    """Serializes counter snapshots to the stats directory"""

    def __init__(
        self,
        run_tag: str,
        run_dir: Path,
        stats_dir: Optional[Path] = None,
        interval_sec: Optional[float] = None,
        intentional_codes: Optional[List[int]] = None,
        mutation_ratio: Optional[float] = None,
        mutants_per_sample: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.run_tag = run_tag
        self.run_dir = run_dir
        self.stats_dir = Path(stats_dir or settings.stats_dir)
        self.interval_sec = (
            settings.stats_rotate_minutes * 60 if interval_sec is None else interval_sec
        )
        self.intentional_codes = list(
            settings.intentional_codes if intentional_codes is None else intentional_codes
        )
        self.mutation_ratio = settings.mutation_ratio if mutation_ratio is None else mutation_ratio
        self.mutants_per_sample = (
            settings.mutants_per_sample if mutants_per_sample is None else mutants_per_sample
        )
        self._clock = clock
        self.last_snapshot_time = clock()
        self.stats_dir.mkdir(parents=True, exist_ok=True)

    def capture(self, counters: Counters) -> SnapshotRecord:
        """Freeze a deep copy of ``counters``; later mutation does not leak in."""
        now = self._clock()
        frozen = counters.model_copy(deep=True)
        return SnapshotRecord(
            run_tag=self.run_tag,
            timestamp=now,
            run_dir=self.run_dir,
            counters=frozen,
            runtime_sec=max(0, int((now - frozen.start_time).total_seconds())),
            since_last_discovery_sec=max(0, int((now - frozen.last_discovery_time).total_seconds())),
            mutation_ratio=self.mutation_ratio,
            mutants_per_sample=self.mutants_per_sample,
            intentional_codes=self.intentional_codes,
        )

    def path_for(self, record: SnapshotRecord) -> Path:
        return self.stats_dir / f"stats_{record.run_tag}_{record.timestamp:%Y%m%d_%H%M%S_%f}.txt"

    def snapshot(self, counters: Counters) -> SnapshotRecord:
        """Capture and persist a snapshot unconditionally."""
        record = self.capture(counters)
        path = self.path_for(record)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            f.write(record.render_text())
        os.replace(tmp_path, path)

        self.last_snapshot_time = record.timestamp
        logger.info("snapshot_written", path=str(path), total_mutants=record.counters.total_mutants)
        return record

    def due(self) -> bool:
        elapsed = (self._clock() - self.last_snapshot_time).total_seconds()
        return elapsed >= self.interval_sec

    def maybe_snapshot(self, counters: Counters) -> Optional[SnapshotRecord]:
        """Snapshot if the rotation interval has passed since the last one."""
        if not self.due():
            return None
        return self.snapshot(counters)

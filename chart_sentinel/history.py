from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import List, Protocol

from .models import AnalysisRecord

log = logging.getLogger("history")


class HistoryRecorder(Protocol):
    async def record_analysis(self, record: AnalysisRecord) -> None: ...


class JsonlHistoryRecorder:
    """Append-only JSON-lines log of manual analyses."""

    def __init__(self, path: str):
        self.path = path

    def _append(self, line: str) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def record_analysis(self, record: AnalysisRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False, sort_keys=True)
        await asyncio.to_thread(self._append, line)
        log.info("history_recorded pair=%s path=%s", record.trading_pair, self.path)

    def load(self, limit: int = 50, trading_pair: str = "") -> List[AnalysisRecord]:
        """Most recent records first; bad lines are skipped."""
        if not os.path.exists(self.path):
            return []
        out: List[AnalysisRecord] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for n, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = AnalysisRecord.from_dict(json.loads(line))
                except (KeyError, TypeError, ValueError) as e:
                    log.warning("history_bad_line path=%s line=%d err=%s", self.path, n, e)
                    continue
                if trading_pair and rec.trading_pair != trading_pair.upper():
                    continue
                out.append(rec)
        out.sort(key=lambda r: r.created_at, reverse=True)
        return out[:limit] if limit > 0 else out

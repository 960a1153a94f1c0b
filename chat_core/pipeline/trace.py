"""流水线运行记录器。"""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Literal, Optional
from uuid import uuid4

from chat_core.domain.conversation import format_ts, utcnow


RunState = Literal["scheduled", "in_flight", "completed", "failed"]
FailureKind = Literal["QuotaExceeded", "GenerationError"]


@dataclass
class PipelineRun:
    """一次由用户消息触发的回复生成：scheduled → in_flight → completed / failed。"""

    conversation_id: str
    trigger_message_id: str
    user_id: Optional[str]
    run_id: str = field(default_factory=lambda: f"run-{uuid4().hex}")
    state: RunState = "scheduled"
    scheduled_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    assistant_message_id: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.state in ("completed", "failed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "conversation_id": self.conversation_id,
            "trigger_message_id": self.trigger_message_id,
            "user_id": self.user_id,
            "state": self.state,
            "scheduled_at": format_ts(self.scheduled_at),
            "started_at": format_ts(self.started_at),
            "finished_at": format_ts(self.finished_at),
            "assistant_message_id": self.assistant_message_id,
            "failure_kind": self.failure_kind,
            "error_code": self.error_code,
            "error_message": _trim(self.error_message),
        }


class RunRecorder:
    """保留最近的运行记录；配置了目录时把结束的运行追加写入 JSONL，便于审计。"""

    def __init__(self, trace_dir: str | Path | None = None, keep: int = 500):
        self._runs: Deque[PipelineRun] = deque(maxlen=keep)
        self._lock = threading.Lock()
        self.path: Optional[Path] = None
        if trace_dir:
            traces = Path(trace_dir)
            traces.mkdir(parents=True, exist_ok=True)
            self.path = traces / "pipeline_runs.jsonl"

    def track(self, run: PipelineRun) -> None:
        with self._lock:
            self._runs.append(run)

    def finalize(self, run: PipelineRun) -> None:
        if self.path is None:
            return
        line = json.dumps(run.to_dict(), ensure_ascii=False)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def recent(self, limit: Optional[int] = None) -> List[PipelineRun]:
        with self._lock:
            runs = list(self._runs)
        return runs[-limit:] if limit else runs

    def failures(self) -> List[PipelineRun]:
        return [r for r in self.recent() if r.state == "failed"]

    def find(self, trigger_message_id: str) -> Optional[PipelineRun]:
        for run in reversed(self.recent()):
            if run.trigger_message_id == trigger_message_id:
                return run
        return None


def _trim(text: Optional[str], limit: int = 400) -> Optional[str]:
    if text is None or len(text) <= limit:
        return text
    return text[:limit] + "..."

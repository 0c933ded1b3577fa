# -*- coding: utf-8 -*-
"""
簡易ジョブキュー（シングルプロセス・スレッドワーカー）

- submit_job で検索用データ生成ジョブを投入し、IDを返す
- get_job で状態/進捗/出力パスを参照
- ワーカーはバックグラウンドスレッドで実行
- キューは API アプリが1つ保持する（モジュール変数にはしない）
"""
from __future__ import annotations

import os
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .tasks import build_search_data


@dataclass
class Job:
    id: str
    status: str = "queued"  # queued | running | done | error
    progress: float = 0.0
    message: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    search_data_path: Optional[str] = None
    prefectures_path: Optional[str] = None
    units: int = 0
    error: Optional[str] = None


class JobQueue:
    def __init__(self, runner=build_search_data):
        self.runner = runner
        self.jobs: Dict[str, Job] = {}
        self.q: "queue.Queue[Job]" = queue.Queue()
        self.lock = threading.Lock()
        self.worker = threading.Thread(target=self._worker_loop, daemon=True)
        self.worker.start()

    def submit_job(self, *, input_path: str, area_threshold: Optional[float] = None) -> str:
        job_id = str(uuid.uuid4())
        job = Job(
            id=job_id,
            params={
                "input_path": input_path,
                "out_dir": os.path.join(os.path.dirname(input_path), "public"),
                "area_threshold": area_threshold,
            },
            status="queued",
            message="queued",
        )
        with self.lock:
            self.jobs[job_id] = job
        self.q.put(job)
        return job_id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.lock:
            return self.jobs.get(job_id)

    # 内部利用: 進捗更新
    def _update_progress(self, job: Job, done: int, total: int, phase: str, message: str):
        pct = 0.0
        if total:
            pct = min(max(done / total, 0.0), 1.0)
        job.progress = pct
        job.message = f"{phase}: {message}"

    def _worker_loop(self):
        while True:
            job = self.q.get()
            with self.lock:
                job.status = "running"
                job.message = "started"

            def progress_cb(done, total, phase, message):
                with self.lock:
                    self._update_progress(job, done, total, phase, message)

            try:
                result = self.runner(
                    job.params["input_path"],
                    job.params["out_dir"],
                    area_threshold=job.params["area_threshold"],
                    progress_cb=progress_cb,
                )
                with self.lock:
                    job.status = "done"
                    job.search_data_path = result["search_data_path"]
                    job.prefectures_path = result["prefectures_path"]
                    job.units = result["units"]
                    job.progress = 1.0
                    job.message = "done"
            except Exception as e:
                with self.lock:
                    job.status = "error"
                    job.error = repr(e)
                    job.message = "error"
                    job.progress = 0.0
            finally:
                self.q.task_done()

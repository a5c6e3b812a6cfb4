"""워커 런 아티팩트 저장소: 워커당 JSON 파일 1개 + current 포인터 + 인덱스.

저장 경로:
  {sessions_dir}/{session_id}.json      워커 런 스냅샷 (단일 작성자)
  {sessions_dir}/index.json             최근 세션 목록 (최신순, 최대 50)
  {data_dir}/current_session.json       빠른 상태 조회용 포인터

모든 쓰기는 임시 파일 → os.replace 로 원자적 교체한다.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from crawler.config import crawler_settings
from crawler.worker_run import WorkerRun

INDEX_FILE = "index.json"
POINTER_FILE = "current_session.json"


class ArtifactWriteError(Exception):
    """아티팩트 파일 쓰기 실패."""


def atomic_write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class SessionStore:
    """파일 기반 워커 런 저장소."""

    def __init__(
        self,
        sessions_dir: str | Path | None = None,
        pointer_path: str | Path | None = None,
        index_retention: int | None = None,
    ):
        self.sessions_dir = Path(sessions_dir or crawler_settings.sessions_dir)
        self.pointer_path = Path(pointer_path) if pointer_path else self.sessions_dir.parent / POINTER_FILE
        self.index_retention = index_retention or crawler_settings.index_retention
        self._index_lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self.sessions_dir / INDEX_FILE

    def artifact_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    # ── 쓰기 ──

    def write(self, run: WorkerRun | dict) -> Path:
        """스냅샷 하나를 원자적으로 게시하고 포인터/인덱스 갱신."""
        data = run.to_dict() if isinstance(run, WorkerRun) else run
        path = self.artifact_path(data["session_id"])
        now = datetime.now(UTC).isoformat()
        data = {**data, "saved_at": now}
        try:
            atomic_write_json(path, data)
            with self._index_lock:
                atomic_write_json(self.pointer_path, {
                    "session_id": data["session_id"],
                    "file": str(path),
                    "status": data.get("status"),
                    "total_ads": data.get("total_ads", len(data.get("ads") or [])),
                    "updated_at": now,
                })
                self._update_index(data, path)
        except OSError as e:
            raise ArtifactWriteError(f"{path} 저장 실패: {e}") from e
        return path

    def _update_index(self, data: dict, path: Path):
        index = [e for e in self.load_index() if e.get("session_id") != data["session_id"]]
        index.insert(0, {
            "session_id": data["session_id"],
            "file": path.name,
            "run_id": data.get("run_id", ""),
            "worker_id": data.get("worker_id"),
            "start_time": data.get("start_time"),
            "status": data.get("status"),
            "total_ads": data.get("total_ads", 0),
        })
        atomic_write_json(self.index_path, index[: self.index_retention])

    # ── 읽기 ──

    def load_index(self) -> list[dict]:
        if not self.index_path.exists():
            return []
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
            return data if isinstance(data, list) else []
        except (OSError, ValueError) as e:
            logger.warning("[session-store] 인덱스 손상, 재생성: {}", e)
            return []

    def read(self, path: str | Path) -> dict:
        return json.loads(Path(path).read_text(encoding="utf-8"))

    def read_run(self, path: str | Path) -> WorkerRun:
        return WorkerRun.from_dict(self.read(path))

    def read_current(self) -> dict | None:
        """포인터가 가리키는 아티팩트. 없으면 None."""
        if not self.pointer_path.exists():
            return None
        try:
            pointer = json.loads(self.pointer_path.read_text(encoding="utf-8"))
            return self.read(pointer["file"])
        except (OSError, ValueError, KeyError) as e:
            logger.warning("[session-store] current 포인터 읽기 실패: {}", e)
            return None

    def list_artifacts(self, since: float | None = None) -> list[Path]:
        """세션 아티팩트 경로 (수정시각 오름차순). since 이후 수정된 것만 골라낼 수 있다."""
        if not self.sessions_dir.exists():
            return []
        paths = [
            p for p in self.sessions_dir.glob("*.json")
            if p.name != INDEX_FILE and not p.name.startswith(".")
        ]
        if since is not None:
            paths = [p for p in paths if p.stat().st_mtime > since]
        return sorted(paths, key=lambda p: p.stat().st_mtime)

    def iter_runs(self, paths: list[Path] | None = None):
        """읽을 수 있는 아티팩트만 (path, dict) 로. 손상 파일은 경고 후 건너뜀."""
        for path in paths if paths is not None else self.list_artifacts():
            try:
                data = self.read(path)
            except (OSError, ValueError) as e:
                logger.warning("[session-store] {} 읽기 실패, 건너뜀: {}", path.name, e)
                continue
            if not isinstance(data, dict) or "session_id" not in data:
                logger.warning("[session-store] {} 형식 불일치, 건너뜀", path.name)
                continue
            yield path, data

    def runs_for(self, run_id: str) -> list[Path]:
        return [path for path, data in self.iter_runs() if data.get("run_id") == run_id]


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store

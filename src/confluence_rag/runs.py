from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
import uuid

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from confluence_rag.models import IngestionRunRecord

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"


class SqlRunRecorder:
    """Keeps a row per background space ingestion in `ingestion_runs`."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def started(self, space_key: str) -> str:
        run_id = uuid.uuid4().hex
        with Session(self._engine) as session:
            session.add(
                IngestionRunRecord(
                    id=run_id,
                    space_key=space_key,
                    status=RUN_RUNNING,
                    started_at=datetime.now(timezone.utc),
                )
            )
            session.commit()
        return run_id

    def finished(
        self,
        run_id: str,
        *,
        page_count: int,
        chunk_count: int,
        error: str | None,
    ) -> None:
        with Session(self._engine) as session:
            run = session.get(IngestionRunRecord, run_id)
            if run is None:
                raise LookupError(f"ingestion run not found: {run_id}")
            run.status = RUN_FAILED if error else RUN_SUCCEEDED
            run.page_count = page_count
            run.chunk_count = chunk_count
            run.error = error
            run.finished_at = datetime.now(timezone.utc)
            session.commit()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def run_detail(run: IngestionRunRecord) -> dict[str, Any]:
    return {
        "id": run.id,
        "space_key": run.space_key,
        "status": run.status,
        "page_count": run.page_count,
        "chunk_count": run.chunk_count,
        "started_at": _to_iso(run.started_at),
        "finished_at": _to_iso(run.finished_at),
        "error": run.error,
    }

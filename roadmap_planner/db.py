from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from roadmap_planner.config import get_settings
from roadmap_planner.models import Base, PipelineRun
from roadmap_planner.utils import to_json, utc_now

_ENGINES: dict[str, Engine] = {}
_SESSIONS: dict[str, sessionmaker[Session]] = {}


def get_engine(db_url: str | None = None) -> Engine:
    target_url = db_url or get_settings().database_url
    if target_url not in _ENGINES:
        connect_args = {"check_same_thread": False} if target_url.startswith("sqlite") else {}
        _ENGINES[target_url] = create_engine(target_url, future=True, connect_args=connect_args)
    return _ENGINES[target_url]


def get_session_factory(db_url: str | None = None) -> sessionmaker[Session]:
    target_url = db_url or get_settings().database_url
    if target_url not in _SESSIONS:
        _SESSIONS[target_url] = sessionmaker(
            bind=get_engine(target_url),
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
    return _SESSIONS[target_url]


def init_db(db_url: str | None = None) -> None:
    if db_url is None:
        settings = get_settings()
        settings.ensure_directories()
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(get_engine(db_url))


@contextmanager
def session_scope(db_url: str | None = None) -> Iterator[Session]:
    session_factory = get_session_factory(db_url)
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def start_pipeline_run(session: Session, stage: str) -> PipelineRun:
    run = PipelineRun(stage=stage, status="running", details_json="{}", error_message="", started_at=utc_now())
    session.add(run)
    session.flush()
    return run


def finish_pipeline_run(
    session: Session,
    run: PipelineRun,
    *,
    status: str,
    details: dict | None = None,
    error_message: str = "",
) -> PipelineRun:
    run.status = status
    run.details_json = to_json(details or {})
    run.error_message = error_message
    run.finished_at = utc_now()
    session.add(run)
    return run


def list_pipeline_runs(limit: int = 20, db_url: str | None = None) -> list[PipelineRun]:
    with session_scope(db_url) as session:
        rows = session.execute(select(PipelineRun).order_by(PipelineRun.id.desc()).limit(limit)).scalars().all()
        return list(rows)

"""Postgres-backed ``JobStore``: DDL for the engine's tables plus row-level access.

Each public method runs in its own short transaction through
``get_connection`` (commit on success, rollback on error), so no transaction
is ever held open across an outbound HTTP call.

Credentials come from ``WarehouseSettings`` (WAREHOUSE_HOST, WAREHOUSE_PORT,
WAREHOUSE_DB, WAREHOUSE_USER, WAREHOUSE_PASSWORD) unless a DSN is passed.
"""
from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2 import errors as pg_errors

from shared.config.settings import get_settings
from shared.job_sync.logging_utils import utcnow
from shared.job_sync.models import (
    Category,
    CompanyJobProgress,
    DiscoveredCompany,
    JobRecord,
    PersistedJob,
    PotentialCompany,
    PotentialCompanyStatus,
    SyncLogEntry,
    SyncRun,
    UpsertAction,
)
from shared.job_sync.store import BATCH_STATE_STATUS, DuplicateJobError, JobStore

log = logging.getLogger("job_sync.postgres")

_DDL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {schema}.categories (
    id              integer     PRIMARY KEY,
    name            text        NOT NULL,
    slug            text        NOT NULL UNIQUE,
    description     text
);

CREATE TABLE IF NOT EXISTS {schema}.jobs (
    id                  bigserial   PRIMARY KEY,
    title               text        NOT NULL,
    company             text        NOT NULL,
    description         text,
    description_raw     text,
    full_description    text,
    is_cleansed         boolean     NOT NULL DEFAULT false,
    pay_range           text,
    post_date           timestamptz,
    source_url          text        NOT NULL UNIQUE,
    source_name         text        NOT NULL,
    category_id         integer     NOT NULL REFERENCES {schema}.categories (id),
    remote_type         text        NOT NULL DEFAULT 'fully_remote',
    created_at          timestamptz NOT NULL DEFAULT now(),
    updated_at          timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS {schema}.discovered_companies (
    slug                text        PRIMARY KEY,
    name                text        NOT NULL,
    source              text        NOT NULL,
    job_count           integer     NOT NULL DEFAULT 0,
    remote_job_count    integer     NOT NULL DEFAULT 0,
    departments         jsonb       NOT NULL DEFAULT '[]'::jsonb,
    suggested_category  text,
    sample_jobs         jsonb       NOT NULL DEFAULT '[]'::jsonb,
    status              text        NOT NULL DEFAULT 'new',
    created_at          timestamptz NOT NULL DEFAULT now(),
    updated_at          timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS {schema}.potential_companies (
    id                  bigserial   PRIMARY KEY,
    slug                text        NOT NULL UNIQUE,
    added_at            timestamptz NOT NULL DEFAULT now(),
    last_checked_at     timestamptz,
    check_count         integer     NOT NULL DEFAULT 0,
    status              text        NOT NULL DEFAULT 'pending'
);

CREATE TABLE IF NOT EXISTS {schema}.sync_history (
    id                  text        PRIMARY KEY,
    sync_type           text        NOT NULL,
    source              text,
    started_at          timestamptz NOT NULL,
    completed_at        timestamptz,
    status              text        NOT NULL,
    stats               jsonb       NOT NULL DEFAULT '{{}}'::jsonb,
    logs                jsonb       NOT NULL DEFAULT '[]'::jsonb
);

CREATE INDEX IF NOT EXISTS sync_history_status_type_idx
    ON {schema}.sync_history (status, sync_type);

CREATE TABLE IF NOT EXISTS {schema}.company_job_progress (
    company_slug            text        PRIMARY KEY,
    source                  text        NOT NULL,
    last_job_offset         integer     NOT NULL DEFAULT 0,
    total_jobs_discovered   integer     NOT NULL DEFAULT 0,
    last_synced_at          timestamptz,
    updated_at              timestamptz NOT NULL DEFAULT now()
);
"""

_JOB_COLUMNS = (
    "title",
    "company",
    "description",
    "description_raw",
    "full_description",
    "pay_range",
    "post_date",
    "source_url",
    "source_name",
    "category_id",
    "remote_type",
    "is_cleansed",
)


def _record_params(record: JobRecord) -> Dict[str, Any]:
    return {col: getattr(record, col) for col in _JOB_COLUMNS}


def _job_from_row(row: Dict[str, Any]) -> PersistedJob:
    return PersistedJob(
        id=int(row["id"]),
        title=row["title"],
        company=row["company"],
        description=row["description"],
        description_raw=row["description_raw"],
        full_description=row["full_description"],
        pay_range=row["pay_range"],
        post_date=row["post_date"],
        source_url=row["source_url"],
        source_name=row["source_name"],
        category_id=int(row["category_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        remote_type=row["remote_type"],
        is_cleansed=bool(row["is_cleansed"]),
    )


def _potential_from_row(row: Dict[str, Any]) -> PotentialCompany:
    return PotentialCompany(
        id=int(row["id"]),
        slug=row["slug"],
        added_at=row["added_at"],
        status=row["status"],
        check_count=int(row["check_count"] or 0),
        last_checked_at=row["last_checked_at"],
    )


def _log_entry_from_json(obj: Dict[str, Any]) -> SyncLogEntry:
    return SyncLogEntry(
        timestamp=datetime.fromisoformat(obj["timestamp"]),
        level=obj.get("level", "info"),
        message=obj.get("message", ""),
        source=obj.get("source"),
    )


def _run_from_row(row: Dict[str, Any]) -> SyncRun:
    return SyncRun(
        id=row["id"],
        sync_type=row["sync_type"],
        status=row["status"],
        started_at=row["started_at"],
        source=row["source"],
        completed_at=row["completed_at"],
        stats=dict(row["stats"] or {}),
        logs=[_log_entry_from_json(e) for e in (row["logs"] or [])],
    )


class PostgresStore(JobStore):
    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        schema: str = "public",
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._dsn = dsn or get_settings().warehouse.dsn()
        self._schema = schema
        self._now = now

    @contextmanager
    def get_connection(self) -> Iterator[Any]:
        """Context manager yielding a psycopg2 connection; commits on exit."""
        pg = psycopg2.connect(self._dsn)
        try:
            yield pg
            pg.commit()
        except Exception:
            pg.rollback()
            raise
        finally:
            pg.close()

    def _t(self, table: str) -> str:
        return f"{self._schema}.{table}"

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.get_connection() as pg:
            cur = pg.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    def _execute(self, sql: str, params: Any = ()) -> int:
        with self.get_connection() as pg:
            cur = pg.cursor()
            cur.execute(sql, params)
            return cur.rowcount

    def ensure_schema(self) -> None:
        """Idempotently create the schema and every table the engine uses."""
        with self.get_connection() as pg:
            cur = pg.cursor()
            cur.execute(_DDL.format(schema=self._schema))
        log.info("DDL ensured: schema=%s", self._schema)

    # categories

    def list_categories(self) -> List[Category]:
        rows = self._fetchall(f"SELECT id, name, slug, description FROM {self._t('categories')} ORDER BY id")
        return [Category(id=r["id"], name=r["name"], slug=r["slug"], description=r["description"] or "") for r in rows]

    def insert_categories(self, categories: Iterable[Category]) -> None:
        values = [(c.id, c.name, c.slug, c.description) for c in categories]
        if not values:
            return
        with self.get_connection() as pg:
            cur = pg.cursor()
            psycopg2.extras.execute_values(
                cur,
                f"INSERT INTO {self._t('categories')} (id, name, slug, description) VALUES %s "
                "ON CONFLICT (id) DO NOTHING",
                values,
            )

    # jobs

    def get_job_by_source_url(self, source_url: str) -> Optional[PersistedJob]:
        row = self._fetchone(f"SELECT * FROM {self._t('jobs')} WHERE source_url = %s LIMIT 1", (source_url,))
        return _job_from_row(row) if row else None

    def insert_job(self, record: JobRecord) -> PersistedJob:
        cols = ", ".join(_JOB_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in _JOB_COLUMNS)
        now = self._now()
        params = {**_record_params(record), "now": now}
        try:
            with self.get_connection() as pg:
                cur = pg.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                cur.execute(
                    f"INSERT INTO {self._t('jobs')} ({cols}, created_at, updated_at) "
                    f"VALUES ({placeholders}, %(now)s, %(now)s) RETURNING *",
                    params,
                )
                row = dict(cur.fetchone())
        except pg_errors.UniqueViolation as e:
            raise DuplicateJobError(record.source_url) from e
        return _job_from_row(row)

    def update_job(self, job_id: int, record: JobRecord) -> PersistedJob:
        set_clause = ", ".join(
            f"{c} = COALESCE(%({c})s, post_date)" if c == "post_date" else f"{c} = %({c})s" for c in _JOB_COLUMNS
        )
        params = {**_record_params(record), "now": self._now(), "id": job_id}
        with self.get_connection() as pg:
            cur = pg.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            cur.execute(
                f"UPDATE {self._t('jobs')} SET {set_clause}, updated_at = %(now)s WHERE id = %(id)s RETURNING *",
                params,
            )
            row = cur.fetchone()
        if row is None:
            raise KeyError(job_id)
        return _job_from_row(dict(row))

    def list_jobs(self) -> List[PersistedJob]:
        return [_job_from_row(r) for r in self._fetchall(f"SELECT * FROM {self._t('jobs')} ORDER BY id")]

    def delete_jobs(self, job_ids: Sequence[int]) -> int:
        if not job_ids:
            return 0
        return self._execute(f"DELETE FROM {self._t('jobs')} WHERE id = ANY(%s)", (list(job_ids),))

    # discovered_companies

    def get_discovered_company(self, slug: str) -> Optional[DiscoveredCompany]:
        row = self._fetchone(f"SELECT * FROM {self._t('discovered_companies')} WHERE slug = %s", (slug,))
        if row is None:
            return None
        return DiscoveredCompany(
            slug=row["slug"],
            name=row["name"],
            source=row["source"],
            job_count=int(row["job_count"] or 0),
            remote_job_count=int(row["remote_job_count"] or 0),
            departments=tuple(row["departments"] or ()),
            suggested_category=row["suggested_category"],
            sample_jobs=tuple(row["sample_jobs"] or ()),
            status=row["status"],
        )

    def upsert_discovered_company(self, company: DiscoveredCompany) -> UpsertAction:
        sql = f"""
            INSERT INTO {self._t('discovered_companies')} (
                slug, name, source, job_count, remote_job_count, departments,
                suggested_category, sample_jobs, status, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (slug) DO UPDATE SET
                name = EXCLUDED.name,
                job_count = EXCLUDED.job_count,
                remote_job_count = EXCLUDED.remote_job_count,
                departments = EXCLUDED.departments,
                suggested_category = COALESCE(EXCLUDED.suggested_category,
                                              {self._t('discovered_companies')}.suggested_category),
                sample_jobs = EXCLUDED.sample_jobs,
                updated_at = EXCLUDED.updated_at
            RETURNING (xmax = 0) AS inserted
        """
        now = self._now()
        with self.get_connection() as pg:
            cur = pg.cursor()
            cur.execute(
                sql,
                (
                    company.slug,
                    company.name,
                    company.source,
                    company.job_count,
                    company.remote_job_count,
                    psycopg2.extras.Json(list(company.departments)),
                    company.suggested_category,
                    psycopg2.extras.Json(list(company.sample_jobs)),
                    company.status,
                    now,
                    now,
                ),
            )
            inserted = cur.fetchone()[0]
        return "inserted" if inserted else "updated"

    # potential_companies

    def add_potential_company(self, slug: str) -> PotentialCompany:
        with self.get_connection() as pg:
            cur = pg.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            cur.execute(
                f"INSERT INTO {self._t('potential_companies')} (slug, added_at) VALUES (%s, %s) "
                "ON CONFLICT (slug) DO NOTHING",
                (slug, self._now()),
            )
            cur.execute(f"SELECT * FROM {self._t('potential_companies')} WHERE slug = %s", (slug,))
            row = dict(cur.fetchone())
        return _potential_from_row(row)

    def get_potential_company(self, slug: str) -> Optional[PotentialCompany]:
        row = self._fetchone(f"SELECT * FROM {self._t('potential_companies')} WHERE slug = %s", (slug,))
        return _potential_from_row(row) if row else None

    def list_potential_companies(
        self, statuses: Sequence[PotentialCompanyStatus], *, limit: Optional[int] = None
    ) -> List[PotentialCompany]:
        sql = f"SELECT * FROM {self._t('potential_companies')} WHERE status = ANY(%s) ORDER BY added_at, id"
        params: List[Any] = [list(statuses)]
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))
        return [_potential_from_row(r) for r in self._fetchall(sql, params)]

    def save_potential_company(self, company: PotentialCompany) -> None:
        self._execute(
            f"UPDATE {self._t('potential_companies')} "
            "SET status = %s, check_count = %s, last_checked_at = %s WHERE slug = %s",
            (company.status, company.check_count, company.last_checked_at, company.slug),
        )

    # sync_history

    def _run_params(self, run: SyncRun) -> tuple:
        return (
            run.sync_type,
            run.source,
            run.started_at,
            run.completed_at,
            run.status,
            psycopg2.extras.Json(run.stats, dumps=_json_dumps),
            psycopg2.extras.Json([e.as_dict() for e in run.logs]),
        )

    def create_sync_run(self, run: SyncRun) -> None:
        self._execute(
            f"INSERT INTO {self._t('sync_history')} "
            "(sync_type, source, started_at, completed_at, status, stats, logs, id) "
            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
            self._run_params(run) + (run.id,),
        )

    def save_sync_run(self, run: SyncRun) -> None:
        self._execute(
            f"UPDATE {self._t('sync_history')} SET sync_type = %s, source = %s, started_at = %s, "
            "completed_at = %s, status = %s, stats = %s, logs = %s WHERE id = %s",
            self._run_params(run) + (run.id,),
        )

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        row = self._fetchone(f"SELECT * FROM {self._t('sync_history')} WHERE id = %s", (run_id,))
        return _run_from_row(row) if row else None

    def list_sync_runs(self, sync_type: Optional[str] = None, *, status: Optional[str] = None) -> List[SyncRun]:
        sql = f"SELECT * FROM {self._t('sync_history')} WHERE status <> %s"
        params: List[Any] = [BATCH_STATE_STATUS]
        if sync_type is not None:
            sql += " AND sync_type = %s"
            params.append(sync_type)
        if status is not None:
            sql += " AND status = %s"
            params.append(status)
        return [_run_from_row(r) for r in self._fetchall(sql + " ORDER BY started_at", params)]

    def append_sync_log(self, run_id: str, entry: SyncLogEntry) -> None:
        self._execute(
            f"UPDATE {self._t('sync_history')} SET logs = COALESCE(logs, '[]'::jsonb) || %s::jsonb WHERE id = %s",
            (psycopg2.extras.Json([entry.as_dict()]), run_id),
        )

    def get_batch_state(self, sync_type: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone(
            f"SELECT stats FROM {self._t('sync_history')} WHERE status = %s AND sync_type = %s LIMIT 1",
            (BATCH_STATE_STATUS, sync_type),
        )
        return dict(row["stats"] or {}) if row else None

    def save_batch_state(self, sync_type: str, state: Dict[str, Any]) -> None:
        now = self._now()
        payload = psycopg2.extras.Json(state, dumps=_json_dumps)
        with self.get_connection() as pg:
            cur = pg.cursor()
            cur.execute(
                f"UPDATE {self._t('sync_history')} SET stats = %s, completed_at = %s "
                "WHERE status = %s AND sync_type = %s",
                (payload, now, BATCH_STATE_STATUS, sync_type),
            )
            if cur.rowcount == 0:
                cur.execute(
                    f"INSERT INTO {self._t('sync_history')} "
                    "(id, sync_type, status, started_at, completed_at, stats) VALUES (%s, %s, %s, %s, %s, %s)",
                    (str(uuid.uuid4()), sync_type, BATCH_STATE_STATUS, now, now, payload),
                )

    # company_job_progress

    def get_company_progress(self, company_slug: str) -> Optional[CompanyJobProgress]:
        row = self._fetchone(
            f"SELECT * FROM {self._t('company_job_progress')} WHERE company_slug = %s", (company_slug,)
        )
        if row is None:
            return None
        return CompanyJobProgress(
            company_slug=row["company_slug"],
            source=row["source"],
            last_job_offset=int(row["last_job_offset"] or 0),
            total_jobs_discovered=int(row["total_jobs_discovered"] or 0),
            last_synced_at=row["last_synced_at"],
        )

    def save_company_progress(self, progress: CompanyJobProgress) -> None:
        self._execute(
            f"""
            INSERT INTO {self._t('company_job_progress')} (
                company_slug, source, last_job_offset, total_jobs_discovered, last_synced_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (company_slug) DO UPDATE SET
                source = EXCLUDED.source,
                last_job_offset = EXCLUDED.last_job_offset,
                total_jobs_discovered = EXCLUDED.total_jobs_discovered,
                last_synced_at = EXCLUDED.last_synced_at,
                updated_at = EXCLUDED.updated_at
            """,
            (
                progress.company_slug,
                progress.source,
                progress.last_job_offset,
                progress.total_jobs_discovered,
                progress.last_synced_at,
                self._now(),
            ),
        )


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)

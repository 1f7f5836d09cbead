from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Literal

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from notary.core.config import get_settings

OwnerKind = Literal["organization", "user"]
ARCHIVED_STATUS = "archived"
JOB_POSTING_STATUSES = {"draft", "open", "closed", "archived"}


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write would violate a uniqueness rule."""


@dataclass(slots=True)
class JobPostingRecord:
    id: str
    title: str
    status: str
    organization_id: str
    organization_name: str
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    location: dict[str, Any] = field(default_factory=dict)
    contact: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def archived(self) -> bool:
        return self.status == ARCHIVED_STATUS


@dataclass(slots=True)
class ChainAccountRecord:
    owner_kind: OwnerKind
    owner_id: str
    address: str
    public_key: str
    mnemonic_enc: str
    profile_id: str | None = None
    registry_id: str | None = None
    did: str | None = None
    did_anchored: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return (
            f"ChainAccountRecord(owner_kind={self.owner_kind!r}, owner_id={self.owner_id!r}, "
            f"address={self.address!r})"
        )


@dataclass(slots=True)
class RegistryEntryLinkRecord:
    job_posting_id: str
    entry_id: str
    registry_id: str
    tx_hash: str | None
    revoked: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_ACCOUNT_TABLES: dict[str, tuple[str, str]] = {
    "organization": ("organization_chain_account", "organization_id"),
    "user": ("user_chain_account", "user_id"),
}


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_job_posting(self, posting_id: str) -> JobPostingRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              id::text as id,
              title,
              description,
              status::text as status,
              metadata,
              location,
              contact,
              organization_id,
              organization_name,
              created_at,
              updated_at
            from job_posting
            where id = $1::uuid
            """,
            posting_id,
        )
        if not row:
            return None
        return JobPostingRecord(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            metadata=self._coerce_json_dict(row["metadata"]),
            location=self._coerce_json_dict(row["location"]),
            contact=self._coerce_json_dict(row["contact"]),
            organization_id=row["organization_id"],
            organization_name=row["organization_name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_chain_account(self, owner_kind: OwnerKind, owner_id: str) -> ChainAccountRecord | None:
        table, owner_column = _ACCOUNT_TABLES[owner_kind]
        if owner_kind == "organization":
            identity_columns = "cord_profile_id, cord_registry_id, null::text as cord_did, false as did_anchored"
        else:
            identity_columns = "null::text as cord_profile_id, null::text as cord_registry_id, cord_did, did_anchored"
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select
              {owner_column} as owner_id,
              cord_address,
              cord_public_key,
              cord_mnemonic_enc,
              {identity_columns},
              created_at
            from {table}
            where {owner_column} = $1
            """,
            owner_id,
        )
        if not row:
            return None
        return ChainAccountRecord(
            owner_kind=owner_kind,
            owner_id=row["owner_id"],
            address=row["cord_address"],
            public_key=row["cord_public_key"],
            mnemonic_enc=row["cord_mnemonic_enc"],
            profile_id=row["cord_profile_id"],
            registry_id=row["cord_registry_id"],
            did=row["cord_did"],
            did_anchored=bool(row["did_anchored"]),
            created_at=row["created_at"],
        )

    async def insert_chain_account(self, record: ChainAccountRecord) -> ChainAccountRecord:
        pool = await self._get_pool()
        try:
            if record.owner_kind == "organization":
                await pool.execute(
                    """
                    insert into organization_chain_account (
                      organization_id,
                      cord_address,
                      cord_public_key,
                      cord_mnemonic_enc,
                      cord_profile_id,
                      cord_registry_id,
                      created_at
                    )
                    values ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    record.owner_id,
                    record.address,
                    record.public_key,
                    record.mnemonic_enc,
                    record.profile_id,
                    record.registry_id,
                    record.created_at,
                )
            else:
                await pool.execute(
                    """
                    insert into user_chain_account (
                      user_id,
                      cord_address,
                      cord_public_key,
                      cord_mnemonic_enc,
                      cord_did,
                      did_anchored,
                      created_at
                    )
                    values ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    record.owner_id,
                    record.address,
                    record.public_key,
                    record.mnemonic_enc,
                    record.did,
                    record.did_anchored,
                    record.created_at,
                )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(
                f"{record.owner_kind} {record.owner_id} already has a chain account"
            ) from exc
        except pg_exc.ForeignKeyViolationError as exc:
            raise RepositoryNotFoundError(f"{record.owner_kind} {record.owner_id} not found") from exc
        return record

    async def get_entry_link(self, job_posting_id: str) -> RegistryEntryLinkRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              job_posting_id::text as job_posting_id,
              cord_entry_id,
              registry_id,
              tx_hash,
              revoked,
              created_at,
              updated_at
            from job_posting_cord_entry
            where job_posting_id = $1::uuid
            """,
            job_posting_id,
        )
        return self._entry_link_row_to_record(row) if row else None

    async def insert_entry_link(self, record: RegistryEntryLinkRecord) -> RegistryEntryLinkRecord:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into job_posting_cord_entry (
                  job_posting_id,
                  cord_entry_id,
                  registry_id,
                  tx_hash,
                  revoked,
                  created_at,
                  updated_at
                )
                values ($1::uuid, $2, $3, $4, $5, $6, $7)
                """,
                record.job_posting_id,
                record.entry_id,
                record.registry_id,
                record.tx_hash,
                record.revoked,
                record.created_at,
                record.updated_at,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError(f"job posting {record.job_posting_id} already has a ledger entry") from exc
        return record

    async def update_entry_link(
        self,
        job_posting_id: str,
        *,
        revoked: bool,
        updated_at: datetime,
        tx_hash: str | None = None,
    ) -> RegistryEntryLinkRecord:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            update job_posting_cord_entry
            set
              revoked = $2,
              tx_hash = coalesce($3, tx_hash),
              updated_at = $4
            where job_posting_id = $1::uuid
            returning
              job_posting_id::text as job_posting_id,
              cord_entry_id,
              registry_id,
              tx_hash,
              revoked,
              created_at,
              updated_at
            """,
            job_posting_id,
            revoked,
            tx_hash,
            updated_at,
        )
        if not row:
            raise RepositoryNotFoundError(f"no ledger entry for job posting {job_posting_id}")
        return self._entry_link_row_to_record(row)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("NOTARY_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _entry_link_row_to_record(row: asyncpg.Record) -> RegistryEntryLinkRecord:
        return RegistryEntryLinkRecord(
            job_posting_id=row["job_posting_id"],
            entry_id=row["cord_entry_id"],
            registry_id=row["registry_id"],
            tx_hash=row["tx_hash"],
            revoked=bool(row["revoked"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )

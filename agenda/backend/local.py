"""
In-process backend: SQLAlchemy relational store, object storage and the
change hub behind the BackendClient interface.

Database and storage work is synchronous and runs in the thread pool; change
notifications are published on the event loop once a write has committed.
"""
import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import Uuid
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker
from starlette.concurrency import run_in_threadpool

from ..auth import google
from ..auth.security import is_access_token_revoked, read_token, revoke_access_token, revoke_refresh_token
from ..errors import BackendError, IdentityError, NotFoundError, RecordValidationError, StorageError
from ..services.audit import create_audit_log
from ..services.change_hub import ChangeCallback, ChangeHub
from ..storage.provider import StorageProvider
from .client import AuthCallback, AuthSession, AuthUser, BackendClient, Subscription
from .tables import TableSpec, get_table

logger = structlog.get_logger(__name__)

# Tables whose writes are not recorded in the audit log
_UNAUDITED = {"audit_log", "profiles"}


class LocalBackend(BackendClient):
    def __init__(
        self,
        session_factory: sessionmaker,
        hub: ChangeHub,
        storage: StorageProvider,
        session: Optional[AuthSession] = None,
    ) -> None:
        self._session_factory = session_factory
        self._hub = hub
        self._storage = storage
        self._session = session
        self._auth_listeners: Dict[int, AuthCallback] = {}
        self._next_auth_token = 1

    @property
    def hub(self) -> ChangeHub:
        return self._hub

    @property
    def storage(self) -> StorageProvider:
        return self._storage

    @property
    def actor(self) -> Optional[str]:
        return str(self._session.user.id) if self._session else None

    # -- helpers --------------------------------------------------------

    @staticmethod
    def _column(spec: TableSpec, field: str):
        column = spec.model.__table__.columns.get(field)
        if column is None:
            raise BackendError(f"Unknown column {spec.name}.{field}", table=spec.name, operation="select")
        return getattr(spec.model, field)

    @staticmethod
    def _coerce(spec: TableSpec, field: str, value: Any) -> Any:
        column = spec.model.__table__.columns[field]
        if isinstance(column.type, Uuid) and value is not None and not isinstance(value, uuid.UUID):
            try:
                return uuid.UUID(str(value))
            except ValueError:
                raise BackendError(f"Invalid uuid for {spec.name}.{field}: {value}", table=spec.name)
        return value

    @staticmethod
    def _to_row(spec: TableSpec, obj: Any, join: Optional[str] = None) -> BaseModel:
        try:
            row = spec.row.model_validate(obj)
            if join:
                related = getattr(obj, spec.joins[join].relationship)
                joined = spec.joins[join].schema.model_validate(related) if related is not None else None
                row = row.model_copy(update={join: joined})
        except ValidationError as e:
            raise RecordValidationError(f"Row in {spec.name} failed validation: {e}", table=spec.name)
        return row

    @staticmethod
    def _validate_write(spec: TableSpec, values: Dict[str, Any], operation: str) -> Dict[str, Any]:
        try:
            return spec.write.model_validate(values).model_dump(exclude_unset=True)
        except ValidationError as e:
            raise RecordValidationError(
                f"Invalid {operation} for {spec.name}: {e}", table=spec.name, operation=operation
            )

    def _audit(self, db: Session, action: str, spec: TableSpec, row: BaseModel, data: Dict[str, Any]) -> None:
        if spec.name in _UNAUDITED:
            return
        meta = {"id": str(getattr(row, "id", "")), "values": spec.write.model_validate(data).model_dump(mode="json", exclude_unset=True)}
        create_audit_log(db, action=action, entity=spec.name, actor=self.actor, meta=meta)

    def _commit(self, db: Session, spec: TableSpec, operation: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("backend_write_failed", table=spec.name, operation=operation, error=str(e))
            raise BackendError(f"{operation} on {spec.name} failed: {e.__class__.__name__}", table=spec.name, operation=operation)

    async def _publish(self, spec: TableSpec, event: str, row: BaseModel) -> None:
        await self._hub.publish(spec.name, event, row.model_dump(mode="json"))

    # -- reads ----------------------------------------------------------

    def _select_sync(self, spec, eq, join, order_by) -> List[BaseModel]:
        if join and join not in spec.joins:
            raise BackendError(f"{spec.name} has no join {join}", table=spec.name, operation="select")
        with self._session_factory() as db:
            try:
                q = db.query(spec.model)
                for field, value in (eq or {}).items():
                    q = q.filter(self._column(spec, field) == self._coerce(spec, field, value))
                if join:
                    q = q.options(joinedload(getattr(spec.model, spec.joins[join].relationship)))
                if order_by:
                    q = q.order_by(self._column(spec, order_by).asc())
                objs = q.all()
            except SQLAlchemyError as e:
                raise BackendError(f"select on {spec.name} failed: {e.__class__.__name__}", table=spec.name, operation="select")
            return [self._to_row(spec, obj, join) for obj in objs]

    async def select(self, table, eq=None, join=None, order_by=None):
        spec = get_table(table)
        return await run_in_threadpool(self._select_sync, spec, eq, join, order_by)

    # -- writes ---------------------------------------------------------

    def _insert_sync(self, spec: TableSpec, values: Dict[str, Any]) -> BaseModel:
        data = self._validate_write(spec, values, "insert")
        with self._session_factory() as db:
            obj = spec.model(**data)
            db.add(obj)
            try:
                db.flush()
            except SQLAlchemyError as e:
                db.rollback()
                raise BackendError(f"insert on {spec.name} failed: {e.__class__.__name__}", table=spec.name, operation="insert")
            row = self._to_row(spec, obj)
            self._audit(db, "INSERT", spec, row, data)
            self._commit(db, spec, "insert")
            return row

    async def insert(self, table, values):
        spec = get_table(table)
        row = await run_in_threadpool(self._insert_sync, spec, values)
        await self._publish(spec, "INSERT", row)
        return row

    def _update_sync(self, spec: TableSpec, row_id: Any, values: Dict[str, Any]) -> BaseModel:
        data = self._validate_write(spec, values, "update")
        with self._session_factory() as db:
            obj = db.get(spec.model, self._coerce(spec, "id", row_id))
            if obj is None:
                raise NotFoundError(f"{spec.name} row {row_id} not found", table=spec.name, operation="update")
            for key, value in data.items():
                setattr(obj, key, value)
            try:
                db.flush()
            except SQLAlchemyError as e:
                db.rollback()
                raise BackendError(f"update on {spec.name} failed: {e.__class__.__name__}", table=spec.name, operation="update")
            row = self._to_row(spec, obj)
            self._audit(db, "UPDATE", spec, row, data)
            self._commit(db, spec, "update")
            return row

    async def update(self, table, row_id, values):
        spec = get_table(table)
        row = await run_in_threadpool(self._update_sync, spec, row_id, values)
        await self._publish(spec, "UPDATE", row)
        return row

    def _upsert_sync(self, spec: TableSpec, values: Dict[str, Any], on_conflict: str) -> Tuple[str, BaseModel]:
        data = self._validate_write(spec, values, "upsert")
        if on_conflict not in data:
            raise BackendError(f"upsert on {spec.name} needs a value for {on_conflict}", table=spec.name, operation="upsert")
        key_value = self._coerce(spec, on_conflict, data[on_conflict])
        with self._session_factory() as db:
            obj = db.query(spec.model).filter(self._column(spec, on_conflict) == key_value).first()
            event = "UPDATE" if obj is not None else "INSERT"
            if obj is None:
                obj = spec.model(**data)
                db.add(obj)
            else:
                for key, value in data.items():
                    setattr(obj, key, value)
            try:
                db.flush()
            except SQLAlchemyError as e:
                db.rollback()
                raise BackendError(f"upsert on {spec.name} failed: {e.__class__.__name__}", table=spec.name, operation="upsert")
            row = self._to_row(spec, obj)
            self._audit(db, "UPSERT", spec, row, data)
            self._commit(db, spec, "upsert")
            return event, row

    async def upsert(self, table, values, on_conflict):
        spec = get_table(table)
        event, row = await run_in_threadpool(self._upsert_sync, spec, values, on_conflict)
        await self._publish(spec, event, row)
        return row

    # -- change notifications -------------------------------------------

    async def subscribe(self, table, callback: ChangeCallback, eq=None) -> Subscription:
        spec = get_table(table)
        token = await self._hub.listen(spec.name, callback, eq)
        name = f"{spec.name}:{eq[0]}={eq[1]}" if eq else spec.name
        return Subscription(name, lambda: self._hub.unlisten(spec.name, token))

    # -- object storage -------------------------------------------------

    async def upload(self, bucket, path, data, content_type):
        if not data:
            raise StorageError("Empty upload")
        await run_in_threadpool(self._storage.put, f"{bucket}/{path}", data, content_type)

    async def signed_url(self, bucket, path, expires_s):
        return await run_in_threadpool(self._storage.get_download_url, f"{bucket}/{path}", expires_s)

    async def download(self, bucket: str, path: str) -> Optional[bytes]:
        return await run_in_threadpool(self._storage.read, f"{bucket}/{path}")

    async def delete(self, bucket: str, path: str) -> None:
        await run_in_threadpool(self._storage.delete, f"{bucket}/{path}")

    # -- identity -------------------------------------------------------

    async def sign_in_with_oauth(self, provider, redirect_to=None):
        google.ensure_configured(provider)
        return google.authorization_url(state=redirect_to)

    async def set_session(self, access_token, refresh_token=None):
        payload = read_token(access_token)

        def _revoked():
            with self._session_factory() as db:
                return is_access_token_revoked(db, payload.get("jti"))

        if await run_in_threadpool(_revoked):
            raise IdentityError("Token revoked")
        session = AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            user=AuthUser(id=uuid.UUID(payload["sub"]), email=payload.get("email")),
        )
        self._session = session
        await self._emit_auth("SIGNED_IN", session)
        return session

    async def get_session(self):
        return self._session

    async def sign_out(self):
        session = self._session
        if session:
            def _revoke():
                with self._session_factory() as db:
                    if session.refresh_token:
                        revoke_refresh_token(db, session.refresh_token, user_id=session.user.id)
                    revoke_access_token(db, session.access_token)

            try:
                await run_in_threadpool(_revoke)
            except SQLAlchemyError as e:
                raise IdentityError(f"Sign-out failed: {e.__class__.__name__}")
        self._session = None
        await self._emit_auth("SIGNED_OUT", None)

    async def on_auth_state_change(self, callback):
        token = self._next_auth_token
        self._next_auth_token += 1
        self._auth_listeners[token] = callback

        async def _release():
            self._auth_listeners.pop(token, None)

        return Subscription(f"auth:{token}", _release)

    async def _emit_auth(self, event: str, session: Optional[AuthSession]) -> None:
        for callback in list(self._auth_listeners.values()):
            try:
                await callback(event, session)
            except Exception as e:
                logger.warning("auth_listener_failed", auth_event=event, error=str(e))

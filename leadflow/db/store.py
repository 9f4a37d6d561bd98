# leadflow/db/store.py
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Type

from fastapi import Depends, Header
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.core.config import STORE_TIMEOUT
from leadflow.core.exceptions import StoreTimeoutError
from leadflow.db.session import get_db


class Store:
    """
        Storage port handed to the scoring, distribution, assignment and pipeline
        services instead of a shared module-level client.

        Capabilities:
            - get / create / delete for single rows.
            - update_atomic: one UPDATE statement guarded by a WHERE clause,
              returning the number of rows it actually changed.
            - transaction: commit on success, roll back on any exception.
              Nested calls open a SAVEPOINT so batch callers can isolate items.
            - execute / scalars / scalar for read queries.

        Every call is bounded by `timeout` seconds; a call that runs longer is
        cancelled and surfaces as StoreTimeoutError.
    """

    def __init__(self, session: AsyncSession, timeout: Optional[float] = None):
        self.session = session
        self.timeout = timeout if timeout is not None else STORE_TIMEOUT
        self._depth = 0

    async def _run(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreTimeoutError(f"Store call exceeded {self.timeout}s") from e

    # --- Reads ---
    async def get(self, model: Type[Any], ident: Any) -> Optional[Any]:
        return await self._run(self.session.get(model, ident))

    async def execute(self, stmt):
        return await self._run(self.session.execute(stmt))

    async def scalars(self, stmt) -> List[Any]:
        result = await self.execute(stmt)
        return list(result.scalars().all())

    async def scalar(self, stmt) -> Any:
        result = await self.execute(stmt)
        return result.scalar()

    # --- Writes ---
    async def create(self, obj: Any) -> Any:
        self.session.add(obj)
        await self._run(self.session.flush())
        return obj

    async def update_atomic(self, model: Type[Any], where: list, values: Dict[str, Any]) -> int:
        stmt = update(model).where(*where).values(**values)
        result = await self.execute(stmt)
        return result.rowcount

    async def delete(self, obj: Any) -> None:
        await self._run(self.session.delete(obj))
        await self._run(self.session.flush())

    async def delete_where(self, model: Type[Any], where: list) -> int:
        result = await self.execute(delete(model).where(*where))
        return result.rowcount

    async def flush(self) -> None:
        await self._run(self.session.flush())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Store"]:
        if self._depth:
            savepoint = await self._run(self.session.begin_nested())
            self._depth += 1
            try:
                yield self
                await self._run(savepoint.commit())
            except BaseException:
                await savepoint.rollback()
                raise
            finally:
                self._depth -= 1
        else:
            self._depth += 1
            try:
                yield self
                await self._run(self.session.commit())
            except BaseException:
                await self.session.rollback()
                raise
            finally:
                self._depth -= 1


# Dependency for FastAPI
async def get_store(
    db: AsyncSession = Depends(get_db),
    x_request_timeout: Optional[float] = Header(default=None, gt=0),
) -> Store:
    return Store(db, timeout=x_request_timeout)

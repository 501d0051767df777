"""
Contexto de tenant y repositorio acotado a un tenant.

Los servicios del motor reciben un `TenantRepository` en lugar de una sesión
cruda: toda consulta sale ya filtrada por `tenant_id` y todo objeto agregado
queda sellado con el tenant del contexto. Un id de otro tenant se comporta
exactamente igual que un id inexistente.
"""
from typing import Any, Iterable, List, Optional, Sequence, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.exceptions import NotFoundError


class TenantContext(BaseModel):
    """Empresa, usuario y rol que ejecutan la operación."""
    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    user_id: UUID
    role: Optional[str] = None


class TenantRepository:
    """Acceso a datos acotado a un único tenant."""

    def __init__(self, db: AsyncSession, context: TenantContext):
        self.db = db
        self.context = context

    @property
    def tenant_id(self) -> UUID:
        return self.context.tenant_id

    @property
    def user_id(self) -> UUID:
        return self.context.user_id

    # ===== CONSULTAS =====

    def select(self, model: Type[Any], *entities: Any) -> Select:
        """SELECT del modelo (o de las columnas indicadas) filtrado por tenant."""
        stmt = select(*entities) if entities else select(model)
        return stmt.where(model.tenant_id == self.tenant_id)

    def update(self, model: Type[Any]):
        """UPDATE del modelo filtrado por tenant."""
        return update(model).where(model.tenant_id == self.tenant_id)

    async def get(
        self,
        model: Type[Any],
        obj_id: UUID,
        *,
        for_update: bool = False,
        options: Sequence[Any] = (),
        label: Optional[str] = None,
    ) -> Any:
        stmt = self.select(model).where(model.id == obj_id)
        if options:
            stmt = stmt.options(*options)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        obj = result.scalar_one_or_none()
        if obj is None:
            raise NotFoundError(f"{label or model.__name__} no encontrado")
        return obj

    async def first(self, stmt) -> Optional[Any]:
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def all(self, stmt) -> List[Any]:
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def scalar(self, stmt) -> Any:
        result = await self.db.execute(stmt)
        return result.scalar()

    async def execute(self, stmt):
        return await self.db.execute(stmt)

    # ===== ESCRITURA =====

    def add(self, obj: Any) -> Any:
        if hasattr(type(obj), "tenant_id"):
            if obj.tenant_id is None:
                obj.tenant_id = self.tenant_id
            elif obj.tenant_id != self.tenant_id:
                raise NotFoundError("Recurso no encontrado")
        self.db.add(obj)
        return obj

    def add_all(self, objs: Iterable[Any]) -> None:
        for obj in objs:
            self.add(obj)

    async def flush(self) -> None:
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def refresh(self, obj: Any, attribute_names: Optional[List[str]] = None) -> None:
        await self.db.refresh(obj, attribute_names)

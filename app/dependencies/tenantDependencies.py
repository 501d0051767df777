"""
Dependencias de contexto de tenant para FastAPI.

El token lo emite el servicio de autenticación; aquí solo se leen sus
claims (`sub`, `tenant_id`, `user_role`).
"""
from typing import List
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.core.config import settings
from app.common.tenancy import TenantContext

# Security scheme
security = HTTPBearer()

ALL_ROLES = ["owner", "admin", "seller", "accountant", "viewer"]


class TenantDependencies:
    """Dependencias de contexto reutilizables."""

    @staticmethod
    def get_tenant_context(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> TenantContext:
        """
        Obtener (tenant_id, user_id, role) desde los claims del token.
        Si llega X-Company-ID debe coincidir con el tenant del token.
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No se pudieron validar las credenciales",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                credentials.credentials,
                settings.APP_SECRET_STRING,
                algorithms=[settings.ALGORITHM]
            )
            user_id = UUID(str(payload.get("sub")))
            tenant_claim = payload.get("tenant_id")
            tenant_id = UUID(str(tenant_claim)) if tenant_claim else None
        except (jwt.PyJWTError, ValueError):
            raise credentials_exception

        header_tenant = getattr(request.state, "tenant_id", None)
        if tenant_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Se requiere seleccionar una empresa"
            )
        if header_tenant is not None and header_tenant != tenant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No tienes acceso a esta empresa"
            )

        return TenantContext(
            tenant_id=tenant_id,
            user_id=user_id,
            role=payload.get("user_role")
        )

    @staticmethod
    def require_role(allowed_roles: List[str]):
        """
        Dependencia para requerir roles específicos.
        """
        def role_checker(context: TenantContext = Depends(TenantDependencies.get_tenant_context)):
            if context.role not in allowed_roles:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed_roles)}"
                )
            return context
        return role_checker

    @staticmethod
    def require_owner_or_admin():
        return TenantDependencies.require_role(["owner", "admin"])

    @staticmethod
    def require_any_role():
        return TenantDependencies.require_role(ALL_ROLES)

"""
Request-scoped FastAPI dependencies: caller context and credential lookup.

Usage in a route:
    @router.get("/networks/{provider}/vpcs")
    def list_vpcs(
        credential: Credential = Depends(get_credential),
        ctx: RequestContext = Depends(get_request_context),
    ):
        ...
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, Query

from cloudnet.context import RequestContext
from cloudnet.dao.base import CredentialRepository
from cloudnet.dependencies.dao import get_credential_repository
from cloudnet.errors import NotFoundError
from cloudnet.schemas.credential import Credential


def get_request_context(
    x_actor: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
) -> RequestContext:
    """Build the caller context from the ``X-Actor`` / ``X-Request-Id`` headers."""
    return RequestContext(
        actor=x_actor or "anonymous",
        request_id=x_request_id or uuid.uuid4().hex,
    )


def get_credential(
    credential_id: str = Query(..., description="Id of the stored provider credential."),
    repo: CredentialRepository = Depends(get_credential_repository),
) -> Credential:
    """
    Resolve *credential_id* to a stored credential.

    Raises NotFoundError (HTTP 404) when no such credential exists.
    """
    credential = repo.get(credential_id)
    if credential is None:
        raise NotFoundError(
            f"Credential '{credential_id}' not found.",
            details={"credential_id": credential_id},
        )
    return credential

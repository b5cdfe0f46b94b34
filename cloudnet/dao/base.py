"""
Abstract DAOs (Data Access Objects) the network service depends on.

`CredentialRepository` hands out stored, still-encrypted provider
credentials; `AuditLogRepository` records every successful mutation.
Concrete implementations (DynamoDB, application log, in-memory for tests)
must fulfil these interfaces without the dispatcher or routers knowing which
backend is in use.
"""

from abc import ABC, abstractmethod
from typing import Optional

from cloudnet.schemas.credential import Credential


class CredentialRepository(ABC):
    """Persistence interface for stored provider credentials."""

    @abstractmethod
    def get(self, credential_id: str) -> Optional[Credential]:
        """
        Retrieve a single credential by its id.

        Returns ``None`` when no matching record is found.
        """

    @abstractmethod
    def save(self, credential: Credential) -> None:
        """
        Persist a credential.

        Parameters
        ----------
        credential : Credential
            The credential with its payload already encrypted.  An existing
            record with the same ``id`` is replaced.
        """


class AuditLogRepository(ABC):
    """Sink for audit entries written after successful mutations."""

    @abstractmethod
    def log_action(self, actor: str, action: str, resource_path: str, details: dict) -> None:
        """
        Record that *actor* performed *action* on *resource_path*.

        Parameters
        ----------
        actor : str
            Caller identity from the request context.
        action : str
            Verb, e.g. ``create`` or ``replace_rules``.
        resource_path : str
            ``/networks/{provider}/{resource}/{id}``.
        details : dict
            The serialised event payload.
        """

"""
Provider handler interfaces.

Each provider registers one handler per resource kind.  A verb the provider
does not override raises `FeatureNotImplementedError`, which is how
"known provider, verb not built" is told apart from "unknown provider"
(`NotSupportedError`, raised by the registry).

Handlers translate and normalise only: caching, audit logging and event
publication belong to the dispatcher.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from cloudnet.context import RequestContext
from cloudnet.errors import FeatureNotImplementedError, NetworkError, ProviderError, ValidationFailedError
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    GetSecurityGroupRequest,
    RemoveSecurityGroupRuleRequest,
    RuleDirection,
    SecurityGroupInfo,
    UpdateSecurityGroupRulesRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderSession:
    """Decrypted secrets for one call.  Never cached, never persisted."""

    provider: str
    credential_id: str
    secrets: dict[str, Any]
    ctx: RequestContext = field(default_factory=RequestContext)

    def secret(self, key: str) -> str:
        value = self.secrets.get(key)
        if not value:
            raise ValidationFailedError(f"{key} not found in credential")
        return str(value)


class _Handler:
    provider: str = ""
    resource: str = ""

    def _not_implemented(self, verb: str) -> FeatureNotImplementedError:
        return FeatureNotImplementedError(
            f"{self.resource} {verb} is not implemented for provider {self.provider}",
            details={"provider": self.provider, "verb": verb},
        )


class VPCHandler(_Handler):
    resource = "VPC"

    def list_all(self, session: ProviderSession, request):
        raise self._not_implemented("list")

    def get(self, session: ProviderSession, request):
        raise self._not_implemented("get")

    def create(self, session: ProviderSession, request):
        raise self._not_implemented("create")

    def update(self, session: ProviderSession, request):
        raise self._not_implemented("update")

    def delete(self, session: ProviderSession, request) -> None:
        raise self._not_implemented("delete")


class SubnetHandler(_Handler):
    resource = "Subnet"

    def list_all(self, session: ProviderSession, request):
        raise self._not_implemented("list")

    def get(self, session: ProviderSession, request):
        raise self._not_implemented("get")

    def create(self, session: ProviderSession, request):
        raise self._not_implemented("create")

    def update(self, session: ProviderSession, request):
        raise self._not_implemented("update")

    def delete(self, session: ProviderSession, request) -> None:
        raise self._not_implemented("delete")


class SecurityGroupHandler(_Handler):
    resource = "Security group"

    # True when replace_rules is a single provider call
    atomic_rule_replacement: bool = False

    def list_all(self, session: ProviderSession, request):
        raise self._not_implemented("list")

    def get(self, session: ProviderSession, request):
        raise self._not_implemented("get")

    def create(self, session: ProviderSession, request):
        raise self._not_implemented("create")

    def update(self, session: ProviderSession, request):
        raise self._not_implemented("update")

    def delete(self, session: ProviderSession, request) -> None:
        raise self._not_implemented("delete")

    def add_rule(self, session: ProviderSession, request):
        raise self._not_implemented("add rule")

    def remove_rule(self, session: ProviderSession, request):
        raise self._not_implemented("remove rule")

    def replace_rules(self, session: ProviderSession, request):
        raise self._not_implemented("replace rules")


class RemoveThenAddRuleReplacement:
    """
    Non-atomic rule replacement for providers without a replace call.

    Every existing rule is removed (failures are logged and skipped), then
    the requested ingress and egress rules are added.  A failed add aborts
    with `ProviderError`; the group may be left with a partial rule set.
    """

    atomic_rule_replacement = False

    def replace_rules(
        self, session: ProviderSession, request: UpdateSecurityGroupRulesRequest
    ) -> SecurityGroupInfo:
        target = GetSecurityGroupRequest(
            security_group_id=request.security_group_id,
            region=request.region,
            resource_group=request.resource_group,
        )
        current = self.get(session, target)

        for rule in current.rules:
            session.ctx.raise_if_cancelled()
            try:
                self.remove_rule(
                    session,
                    RemoveSecurityGroupRuleRequest(
                        security_group_id=request.security_group_id,
                        region=request.region,
                        resource_group=request.resource_group,
                        rule=rule,
                    ),
                )
            except NetworkError as exc:
                logger.warning(
                    "Failed to remove %s rule %s/%s-%s from %s: %s",
                    rule.type.value, rule.protocol, rule.from_port, rule.to_port,
                    request.security_group_id, exc,
                )

        for direction, rules in (
            (RuleDirection.INGRESS, request.ingress_rules),
            (RuleDirection.EGRESS, request.egress_rules),
        ):
            for rule in rules:
                session.ctx.raise_if_cancelled()
                try:
                    self.add_rule(
                        session,
                        AddSecurityGroupRuleRequest(
                            security_group_id=request.security_group_id,
                            region=request.region,
                            resource_group=request.resource_group,
                            rule=rule.model_copy(update={"type": direction}),
                        ),
                    )
                except NetworkError as exc:
                    raise ProviderError(
                        f"failed to add {direction.value} rule: {exc.message}",
                        provider=session.provider,
                        operation="replace_rules",
                    ) from exc

        return self.get(session, target)


@dataclass
class ProviderHandlers:
    vpcs: VPCHandler
    subnets: SubnetHandler
    security_groups: SecurityGroupHandler

"""
NCP (Naver Cloud Platform) placeholder handlers.

The provider is registered so callers get ``NOT_IMPLEMENTED`` rather than
``NOT_SUPPORTED``.  Listing returns an empty collection; every other verb
falls through to the base-class error.
"""

import logging

from cloudnet.cloud.base import (
    ProviderHandlers,
    ProviderSession,
    SecurityGroupHandler,
    SubnetHandler,
    VPCHandler,
)
from cloudnet.schemas.common import PROVIDER_NCP

logger = logging.getLogger(__name__)


class NCPVPCHandler(VPCHandler):
    provider = PROVIDER_NCP

    def list_all(self, session: ProviderSession, request) -> list:
        logger.info("NCP VPC listing is not available yet; returning an empty list")
        return []


class NCPSubnetHandler(SubnetHandler):
    provider = PROVIDER_NCP

    def list_all(self, session: ProviderSession, request) -> list:
        logger.info("NCP subnet listing is not available yet; returning an empty list")
        return []


class NCPSecurityGroupHandler(SecurityGroupHandler):
    provider = PROVIDER_NCP

    def list_all(self, session: ProviderSession, request) -> list:
        logger.info("NCP security group listing is not available yet; returning an empty list")
        return []


def build_ncp_handlers() -> ProviderHandlers:
    return ProviderHandlers(
        vpcs=NCPVPCHandler(),
        subnets=NCPSubnetHandler(),
        security_groups=NCPSecurityGroupHandler(),
    )

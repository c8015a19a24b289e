"""Context fingerprinting.

A fingerprint is the replay cache key of a request. It is a pure function
of the tenant, organization, action type, channel and the normalized,
non-volatile parameters.
"""

import hashlib
import json
from typing import Any, Dict, FrozenSet, Iterable, Optional

from decisioncore.exceptions import TenantIsolationError
from decisioncore.models.context import RequestContext


FINGERPRINT_VERSION = "fp1"

# Parameters that change on every request and would make every lookup a miss
DEFAULT_VOLATILE_PARAMETERS = frozenset({
    "occurredat",
    "timestamp",
    "created_at",
    "updated_at",
    "trace_id",
    "request_id",
    "correlation_id",
    "span_id",
    "nonce",
})


def require_tenancy(ctx: RequestContext) -> None:
    """Reject a context that lacks tenant or organization identifiers.

    Raises:
        TenantIsolationError: If either identifier is missing or blank
    """
    missing = [
        name for name in ("tenant_id", "organization_id")
        if not (getattr(ctx, name) or "").strip()
    ]
    if missing:
        raise TenantIsolationError(
            "Request context is missing tenant scoping",
            details={"missing": missing},
        )


class FingerprintBuilder:
    """Derives deterministic fingerprints from request contexts."""

    def __init__(self, volatile_parameters: Optional[Iterable[str]] = None):
        names = DEFAULT_VOLATILE_PARAMETERS if volatile_parameters is None else volatile_parameters
        self.volatile_parameters: FrozenSet[str] = frozenset(n.casefold() for n in names)

    def canonical_input(self, ctx: RequestContext) -> Dict[str, Any]:
        """The exact structure that gets hashed."""
        params = {
            name.strip().casefold(): value.canonical()
            for name, value in ctx.parameters.items()
            if name.strip().casefold() not in self.volatile_parameters
        }
        return {
            "tenant": ctx.tenant_id.strip(),
            "organization": ctx.organization_id.strip(),
            "action_type": ctx.action_type.strip().casefold(),
            "channel": (ctx.channel or "").strip().casefold(),
            "params": params,
        }

    def fingerprint(self, ctx: RequestContext) -> str:
        """
        Compute the fingerprint of a request.

        Args:
            ctx: Request context

        Returns:
            "fp1:" followed by a hex sha256 digest

        Raises:
            TenantIsolationError: If the context has no tenant or organization
        """
        require_tenancy(ctx)
        encoded = json.dumps(
            self.canonical_input(ctx),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
        digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()
        return f"{FINGERPRINT_VERSION}:{digest}"

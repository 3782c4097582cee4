"""Quota registry: operation identity -> QuotaSpec.

Populated once during startup, then frozen into a read-only snapshot that
request handling reads without any locking.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterator, Mapping

from apithrottle.core.errors import QuotaConfigError
from apithrottle.core.quota import QuotaSpec

logger = logging.getLogger(__name__)

QuotaSnapshot = Mapping[str, QuotaSpec]

# Separates caller and operation in counter keys; operation names may not use it.
OPERATION_SEPARATOR = ":"


class QuotaRegistry:
    """Mapping of operation identities to their configured quotas.

    Operations without a quota (or with an all-zero quota) are simply absent
    and therefore never throttled.
    """

    def __init__(self) -> None:
        self._quotas: dict[str, QuotaSpec] = {}
        self._frozen = False

    def register(self, operation: str, quota: QuotaSpec) -> None:
        """Insert or replace the quota for an operation.

        Args:
            operation: Stable operation identity (e.g. the route name).
            quota: Limits to enforce for that operation.

        Raises:
            QuotaConfigError: If the registry is frozen, the operation name
                is empty or contains ":" (the caller key separator), or quota
                is not a QuotaSpec.
        """

        if self._frozen:
            raise QuotaConfigError(
                code="registry_frozen",
                message="quota registry is read-only after startup",
                details={"operation": operation},
            )
        if not isinstance(operation, str) or not operation:
            raise QuotaConfigError(
                code="invalid_operation",
                message="operation identity must be a non-empty string",
                details={"value": operation},
            )
        if OPERATION_SEPARATOR in operation:
            raise QuotaConfigError(
                code="invalid_operation",
                message="operation identity must not contain ':'",
                details={"value": operation},
            )
        if not isinstance(quota, QuotaSpec):
            raise QuotaConfigError(
                code="invalid_quota",
                message="quota must be a QuotaSpec",
                details={"operation": operation, "value": repr(quota)},
            )

        if quota.is_unconstrained:
            # All windows unconfigured: behave as if nothing was declared
            self._quotas.pop(operation, None)
            logger.debug("quota.unconstrained", extra={"operation": operation})
            return

        replaced = operation in self._quotas
        self._quotas[operation] = quota
        logger.info(
            "quota.registered",
            extra={"operation": operation, "replaced": replaced, **quota.as_dict()},
        )

    def lookup(self, operation: str) -> QuotaSpec | None:
        return self._quotas.get(operation)

    def freeze(self) -> QuotaSnapshot:
        """End the registration phase and return a read-only snapshot."""
        self._frozen = True
        return MappingProxyType(dict(self._quotas))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def operations(self) -> list[str]:
        return sorted(self._quotas)

    def __contains__(self, operation: object) -> bool:
        return operation in self._quotas

    def __len__(self) -> int:
        return len(self._quotas)

    def __iter__(self) -> Iterator[str]:
        return iter(self._quotas)

"""Run-scoped lookup cache resolving warehouse business codes to internal ids."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Protocol

from pension_sync.errors import CacheBuildError
from pension_sync.logging import log_error, log_info

_logger = logging.getLogger(__name__)


class LookupDomain(StrEnum):
    """Reference domains resolved during a sync run."""

    PENSION_TYPES = "pension_types"
    PENSIONER_TYPES = "pensioner_types"
    PRODUCTS = "products"
    BRANCHES = "branches"
    PAR_STATUSES = "par_statuses"
    ACCOUNT_TYPES = "account_types"


class ReferenceReader(Protocol):
    """Store surface needed to read one reference domain."""

    async def list_reference_codes(self, domain: LookupDomain) -> Mapping[str, str]:
        """Return ``code -> id`` for every active row of ``domain``."""


def _freeze(mapping: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class LookupCache:
    """Immutable snapshot of code-to-id maps, one per reference domain."""

    pension_types: Mapping[str, str] = field(default_factory=dict)
    pensioner_types: Mapping[str, str] = field(default_factory=dict)
    products: Mapping[str, str] = field(default_factory=dict)
    branches: Mapping[str, str] = field(default_factory=dict)
    par_statuses: Mapping[str, str] = field(default_factory=dict)
    account_types: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze every domain map so the cache stays read-only for the run."""
        for domain in LookupDomain:
            object.__setattr__(self, domain.value, _freeze(getattr(self, domain.value)))

    def mapping(self, domain: LookupDomain) -> Mapping[str, str]:
        return getattr(self, domain.value)

    def resolve(self, domain: LookupDomain, code: str) -> str | None:
        """Return the internal id for ``code``, or ``None`` when unresolved."""
        return self.mapping(domain).get(code)

    def sizes(self) -> dict[str, int]:
        return {domain.value: len(self.mapping(domain)) for domain in LookupDomain}


async def build_lookup_cache(store: ReferenceReader) -> LookupCache:
    """Read every reference domain and build a fresh lookup cache.

    All domains are read concurrently. The build is all-or-nothing: a sync run
    must never proceed with a partially populated cache.

    Args:
        store: Operational store exposing reference-table reads.

    Returns:
        A frozen cache covering all six domains.

    Raises:
        CacheBuildError: When any domain read fails.
    """
    domains = tuple(LookupDomain)
    results = await asyncio.gather(
        *(store.list_reference_codes(domain) for domain in domains),
        return_exceptions=True,
    )

    maps: dict[str, Mapping[str, str]] = {}
    for domain, result in zip(domains, results, strict=True):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            log_error(
                _logger,
                "lookup_cache_build_failed",
                domain=domain.value,
                error_type=result.__class__.__name__,
                error=str(result),
            )
            raise CacheBuildError(domain.value, str(result)) from result
        maps[domain.value] = result

    cache = LookupCache(**maps)
    log_info(_logger, "lookup_cache_built", **cache.sizes())
    return cache

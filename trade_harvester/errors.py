"""Exception hierarchy shared across the harvester."""

from __future__ import annotations


class HarvestError(Exception):
    """Base class for harvester specific errors."""


class ContractError(HarvestError):
    """An adapter handed back something the core cannot interpret."""


class PayloadError(ContractError):
    """Upstream body could not be decoded into the expected JSON envelope."""


class JobNotFoundError(HarvestError, FileNotFoundError):
    """Requested job configuration does not exist."""


__all__ = ["ContractError", "HarvestError", "JobNotFoundError", "PayloadError"]

"""
Issuance error taxonomy.

Run-fatal: MalformedDomainError, AccountProvisioningError.
Domain-fatal: everything else; nodes record them in the domain's state
(status="failed", error, error_type) instead of letting them cross domains.
DnsProviderError, RetryExhaustedError, ApplianceImportError and
RepositorySyncError live next to the code that raises them.
"""
from __future__ import annotations


class IssuanceError(Exception):
    """Base class for certificate issuance failures."""


class MalformedDomainError(IssuanceError):
    """A domain list entry is empty or not a valid FQDN."""


class AccountProvisioningError(IssuanceError):
    """The ACME account could not be found, created or updated."""


class KeyGenerationError(IssuanceError):
    pass


class CsrGenerationError(IssuanceError):
    pass


class ChallengeRequestError(IssuanceError):
    """Creating the order or reading its DNS-01 challenge failed."""


class PropagationTimeoutError(IssuanceError):
    """The challenge TXT record did not become visible in time."""

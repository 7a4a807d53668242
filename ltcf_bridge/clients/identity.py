"""Dependency providers for the identity resolver and submission lock.

The API treats the application lifetime as one batch run: the resolver's
cache lives until shutdown or an explicit reset, and submissions run one at
a time under the lock so cached ids are never read mid-update.
"""

import asyncio

from ltcf_bridge.submission.identity import IdentityResolver

_identity_resolver: IdentityResolver | None = None
_submission_lock: asyncio.Lock | None = None


def get_identity_resolver() -> IdentityResolver:
    """Get the run-wide IdentityResolver, so ids survive across requests."""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver()
    return _identity_resolver


def get_submission_lock() -> asyncio.Lock:
    """Get the lock that serializes record processing."""
    global _submission_lock
    if _submission_lock is None:
        _submission_lock = asyncio.Lock()
    return _submission_lock


def reset_identity_resolver() -> None:
    """End the current run: drop the resolver and its lock."""
    global _identity_resolver, _submission_lock
    _identity_resolver = None
    _submission_lock = None

"""Error types for FleetDeck.

- FleetDeckError: base of every domain error
- AuthFailure / RefreshFailure family: bot API session errors
- HintUnavailable: best-effort enrichment failure (value, not raised)
- StorageError / DuplicateIdentityError: credential store errors
- ControlPlaneError: VPS control-plane API errors
"""

from fleetdeck.errors.domain import (
    AuthFailure,
    ControlPlaneError,
    DuplicateIdentityError,
    FleetDeckError,
    HintUnavailable,
    RefreshExpired,
    RefreshFailure,
    RefreshTransient,
    StorageError,
)

__all__ = [
    "FleetDeckError",
    "AuthFailure",
    "RefreshFailure",
    "RefreshExpired",
    "RefreshTransient",
    "HintUnavailable",
    "StorageError",
    "DuplicateIdentityError",
    "ControlPlaneError",
]

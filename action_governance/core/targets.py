"""Collection code normalization shared by policy checks and table lookup."""

from __future__ import annotations


def normalize_collection(code: str) -> str:
    """Return the canonical form of a collection code.

    Policy lookups, read-only checks and table resolution all compare this
    form, so ``/INCIDENTS/1`` and ``/service-requests/new`` are governed
    exactly like ``incidents`` and ``service_requests``.
    """
    return code.strip().lower().replace("-", "_")

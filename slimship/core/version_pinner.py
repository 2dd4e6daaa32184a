"""Version pinning — detects toolchain and base drift between runs.

Two runs are only expected to produce equivalent images when they were
built against the same toolchain image, channel, base image and dependency
set. The pinner reports every field that differs.
"""

from __future__ import annotations

from slimship.core.hasher import compute_pin_hash
from slimship.models.versioning import VersionPin


class VersionDriftError(RuntimeError):
    """Raised when current versions don't match the pinned versions for a run."""


class VersionPinner:
    """Compares the current version pin against a recorded one."""

    def __init__(self, current_pin: VersionPin | None = None) -> None:
        self._current = current_pin or VersionPin()

    @property
    def current_pin(self) -> VersionPin:
        return self._current

    @property
    def pin_hash(self) -> str:
        return compute_pin_hash(self._current)

    def check_drift(
        self,
        recorded_pin: VersionPin,
        *,
        strict: bool = True,
    ) -> list[str]:
        """Compare current versions against a recorded pin.

        Returns a list of drift descriptions. Empty list means no drift.
        Raises VersionDriftError if strict=True and drift is detected.
        """
        drifts: list[str] = []
        current = self._current.model_dump()
        recorded = recorded_pin.model_dump()

        for field, current_val in current.items():
            recorded_val = recorded.get(field)
            if current_val != recorded_val:
                drifts.append(
                    f"{field}: recorded={recorded_val!r}, current={current_val!r}"
                )

        if strict and drifts:
            raise VersionDriftError(
                f"Version drift detected: {'; '.join(drifts)}"
            )

        return drifts

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class VoucherSnapshot:
    redemptions: Dict[str, int]
    rejections: Dict[str, int]
    compensation: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": dict(self.redemptions),
            "rejections": dict(self.rejections),
            "compensation": dict(self.compensation),
        }


class VoucherObservabilityStore:
    """Collect redemption pipeline telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._rejections: Dict[str, int] = defaultdict(int)
        self._compensation: Dict[str, int] = defaultdict(int)

    def record_success(self) -> None:
        with self._lock:
            self._redemptions["succeeded"] += 1

    def record_rejection(self, code: str) -> None:
        with self._lock:
            self._redemptions["rejected"] += 1
            self._rejections[code] += 1

    def record_conflict(self) -> None:
        with self._lock:
            self._redemptions["conflicts_retried"] += 1

    def record_cancellation(self, status: str) -> None:
        with self._lock:
            self._redemptions[f"voided:{status.lower()}"] += 1

    def record_compensation(self, *, succeeded: bool) -> None:
        with self._lock:
            key = "succeeded" if succeeded else "failed"
            self._compensation[key] += 1

    def snapshot(self) -> VoucherSnapshot:
        with self._lock:
            return VoucherSnapshot(
                redemptions=dict(self._redemptions),
                rejections=dict(self._rejections),
                compensation=dict(self._compensation),
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._rejections.clear()
            self._compensation.clear()


_STORE = VoucherObservabilityStore()


def get_voucher_store() -> VoucherObservabilityStore:
    return _STORE


__all__ = ["get_voucher_store", "VoucherObservabilityStore", "VoucherSnapshot"]

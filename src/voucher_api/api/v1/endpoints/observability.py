"""Observability endpoints for redemption telemetry and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from voucher_api.api.dependencies.security import require_operator_api_key
from voucher_api.observability.vouchers import get_voucher_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/vouchers",
    dependencies=[Depends(require_operator_api_key)],
    summary="Voucher redemption observability snapshot",
)
async def get_voucher_snapshot() -> dict[str, object]:
    """Retrieve aggregated redemption counters (requires operator API key)."""
    return get_voucher_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_operator_api_key)],
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_voucher_store().snapshot()

    lines: list[str] = []
    lines.extend(
        _format_metric(
            "voucher_redemptions_succeeded_total",
            "Voucher redemptions committed",
            snapshot.redemptions.get("succeeded", 0),
        )
    )
    lines.extend(
        _format_metric(
            "voucher_redemptions_rejected_total",
            "Voucher redemptions rejected",
            snapshot.redemptions.get("rejected", 0),
        )
    )
    lines.extend(
        _format_metric(
            "voucher_redemption_conflicts_total",
            "Optimistic redemption attempts that lost a race and retried",
            snapshot.redemptions.get("conflicts_retried", 0),
        )
    )

    for key, value in snapshot.redemptions.items():
        if not key.startswith("voided:"):
            continue
        lines.extend(
            _format_metric(
                "voucher_redemptions_voided_total",
                "Redemptions cancelled or refunded by operators",
                value,
                labels={"status": key.split(":", 1)[1]},
            )
        )

    for reason, value in snapshot.rejections.items():
        lines.extend(
            _format_metric(
                "voucher_redemption_rejections_total",
                "Voucher redemption rejections grouped by reason",
                value,
                labels={"reason": reason},
            )
        )

    for outcome, value in snapshot.compensation.items():
        lines.extend(
            _format_metric(
                "voucher_capacity_compensations_total",
                "Capacity compensations grouped by outcome",
                value,
                labels={"outcome": outcome},
            )
        )

    body = "\n".join(lines) + "\n"
    return PlainTextResponse(content=body, media_type="text/plain; version=0.0.4")

# backend/revshare/core/platform_settings.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.config import Settings, settings as env_settings
from revshare.core.errors import ValidationFailed
from revshare.models.platform_settings import PlatformSettings

SUPPORTED_CURRENCIES = ("SYP", "SYR", "USD", "EUR", "GBP")

# minor units; SYP/SYR come from MINIMUM_PAYOUT_AMOUNT_SYP
FIXED_MINIMUM_PAYOUTS = {"USD": 1000, "EUR": 1000, "GBP": 1000}
FALLBACK_MINIMUM_PAYOUT = 1000


@dataclass(frozen=True)
class SettingsSnapshot:
    """
    Immutable view of the platform settings for ONE operation.
    Loaded fresh per call; never cached across requests.
    """

    platform_percentage: Decimal
    instructor_percentage: Decimal
    default_currency: str
    minimum_payouts: Mapping[str, int] = field(default_factory=dict)

    def minimum_payout_for(self, currency: str) -> int:
        return int(self.minimum_payouts.get(currency, FALLBACK_MINIMUM_PAYOUT))


def normalize_currency(value: str | None) -> str:
    c = (value or "").strip().upper()
    if c not in SUPPORTED_CURRENCIES:
        raise ValidationFailed(
            "UNSUPPORTED_CURRENCY",
            f"Unsupported currency {value!r}. Allowed: {', '.join(SUPPORTED_CURRENCIES)}",
        )
    return c


def _default_minimums(cfg: Settings) -> dict[str, int]:
    syp = int(cfg.MINIMUM_PAYOUT_AMOUNT_SYP) * 100
    return {"SYP": syp, "SYR": syp, **FIXED_MINIMUM_PAYOUTS}


def snapshot_from_env(cfg: Settings = env_settings) -> SettingsSnapshot:
    return SettingsSnapshot(
        platform_percentage=Decimal(str(cfg.DEFAULT_PLATFORM_PERCENTAGE)),
        instructor_percentage=Decimal(str(cfg.DEFAULT_INSTRUCTOR_PERCENTAGE)),
        default_currency=normalize_currency(cfg.DEFAULT_CURRENCY),
        minimum_payouts=MappingProxyType(_default_minimums(cfg)),
    )


async def load_settings_snapshot(db: AsyncSession, cfg: Settings = env_settings) -> SettingsSnapshot:
    """
    Merge the platform_settings row (if any) over the environment defaults.
    """
    base = snapshot_from_env(cfg)
    row = (await db.execute(select(PlatformSettings).order_by(PlatformSettings.id).limit(1))).scalar_one_or_none()
    if row is None:
        return base

    platform_pct = base.platform_percentage
    instructor_pct = base.instructor_percentage
    if row.platform_percentage is not None and row.instructor_percentage is not None:
        platform_pct = Decimal(row.platform_percentage)
        instructor_pct = Decimal(row.instructor_percentage)

    minimums = dict(base.minimum_payouts)
    for currency, amount in (row.minimum_payouts or {}).items():
        minimums[str(currency).upper()] = int(amount)

    return SettingsSnapshot(
        platform_percentage=platform_pct,
        instructor_percentage=instructor_pct,
        default_currency=normalize_currency(row.default_currency) if row.default_currency else base.default_currency,
        minimum_payouts=MappingProxyType(minimums),
    )

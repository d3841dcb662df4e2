from typing import Mapping, Optional

from pydantic import BaseModel


DEFAULT_CURRENCY = "USD"
HOURS_PER_WORKDAY = 8


class BillingRate(BaseModel):
    daily_rate: float
    currency: str

    @property
    def hourly_rate(self) -> float:
        return get_hourly_rate(self.daily_rate)


def get_hourly_rate(daily_rate: float) -> float:
    return daily_rate / HOURS_PER_WORKDAY


def resolve_daily_rate(contract_billing: Optional[Mapping], customer_billing: Mapping) -> BillingRate:
    """Pick the daily rate and currency for a contract group.

    A contract that carries a rate always wins, even when that rate is 0
    (pro-bono work). Only a missing contract, or a contract without a rate,
    falls back to the customer's default billing.
    """
    contract_billing = contract_billing or {}
    contract_rate = contract_billing.get("daily_rate")
    if contract_rate is not None:
        daily_rate = float(contract_rate)
    else:
        daily_rate = float(customer_billing.get("daily_rate") or 0.0)
    currency = contract_billing.get("currency") or customer_billing.get("currency") or DEFAULT_CURRENCY
    return BillingRate(daily_rate=daily_rate, currency=currency)

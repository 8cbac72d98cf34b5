"""
价格目录 - 进程启动时固定，改价需重新部署
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from domain.common.exceptions import DomainValidationException, UnknownPlanException


@dataclass(frozen=True)
class Plan:
    """订阅档位（不可变）"""

    id: str
    name: str
    description: str
    amount: int  # 最小货币单位
    currency: str

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Plan amount must be positive: {self.amount}",
                field="amount",
            )
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )


class PlanCatalog:
    """plan_id -> Plan 的只读映射"""

    def __init__(self, plans: Iterable[Plan]):
        entries: dict[str, Plan] = {}
        for plan in plans:
            if plan.id in entries:
                raise ValueError(f"Duplicate plan id: {plan.id}")
            entries[plan.id] = plan
        self._plans: Mapping[str, Plan] = MappingProxyType(entries)

    def resolve(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise UnknownPlanException(plan_id)
        return plan

    def all(self) -> list[Plan]:
        return list(self._plans.values())

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans


PREMIUM_PLANS = (
    Plan(
        id="basic",
        name="Basic Premium",
        description="Unlock premium wallpapers",
        amount=30000,  # ₹300
        currency="INR",
    ),
    Plan(
        id="pro",
        name="Pro Premium",
        description="Unlock all premium features",
        amount=60000,  # ₹600
        currency="INR",
    ),
)

default_catalog = PlanCatalog(PREMIUM_PLANS)

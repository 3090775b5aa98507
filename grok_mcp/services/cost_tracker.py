"""
Session cost tracking and budget enforcement.

Costs are checked before a request is sent (from an estimate) and recorded
after it completes (from actual usage). The session total only grows until
``reset()`` starts a new session.
"""

import dataclasses
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config import CostTrackerOptions
from ..errors import BudgetExceeded
from ..models import get_pricing
from ..results import CostEstimate

logger = logging.getLogger(__name__)


@dataclass
class CostRecord:
    timestamp: float
    cost_usd: float
    model: str
    input_tokens: int
    output_tokens: int


@dataclass
class ModelUsage:
    cost: float = 0.0
    queries: int = 0
    tokens: int = 0


@dataclass
class UsageSummary:
    total_cost_usd: float
    limit_usd: float
    remaining_budget_usd: float
    query_count: int
    total_input_tokens: int
    total_output_tokens: int
    by_model: dict[str, ModelUsage]
    limit_enforced: bool
    budget_used_percent: int
    session_started_at: datetime
    records: list[CostRecord] = field(default_factory=list)


class CostTracker:
    def __init__(
        self,
        options: Optional[CostTrackerOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._options = options or CostTrackerOptions()
        self._clock = clock
        self._reset_state()

    def _reset_state(self) -> None:
        self._records: deque[CostRecord] = deque(maxlen=max(self._options.max_records, 0))
        self._total_cost = 0.0
        self._query_count = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._by_model: dict[str, ModelUsage] = {}
        self._session_start = self._clock()

    @staticmethod
    def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> CostEstimate:
        """Price a token count. Unknown models use the default pricing."""
        pricing = get_pricing(model)
        return CostEstimate(
            estimated_usd=(input_tokens / 1_000_000) * pricing["input"]
            + (output_tokens / 1_000_000) * pricing["output"],
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=model,
            input_per_1m=pricing["input"],
            output_per_1m=pricing["output"],
        )

    @staticmethod
    def format_cost(cost_usd: float) -> str:
        if cost_usd < 0.01:
            return f"${cost_usd:.6f}"
        if cost_usd < 1:
            return f"${cost_usd:.4f}"
        return f"${cost_usd:.2f}"

    def add_cost(self, cost_usd: float, model: str, input_tokens: int = 0, output_tokens: int = 0) -> None:
        self._records.append(
            CostRecord(
                timestamp=self._clock(),
                cost_usd=cost_usd,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )
        )
        self._total_cost += cost_usd
        self._query_count += 1
        self._input_tokens += input_tokens
        self._output_tokens += output_tokens

        usage = self._by_model.setdefault(model, ModelUsage())
        usage.cost += cost_usd
        usage.queries += 1
        usage.tokens += input_tokens + output_tokens

    def add_from_estimate(self, estimate: CostEstimate) -> None:
        self.add_cost(
            estimate.estimated_usd,
            estimate.model,
            estimate.input_tokens,
            estimate.output_tokens,
        )

    def get_total_cost(self) -> float:
        return self._total_cost

    def get_remaining_budget(self) -> float:
        return max(0.0, self._options.limit_usd - self._total_cost)

    def is_within_budget(self, estimated_cost: float) -> bool:
        if not self._options.enforce_limit:
            return True
        return self._total_cost + estimated_cost <= self._options.limit_usd

    def check_budget(self, estimated_cost: float) -> None:
        """Raise BudgetExceeded if the estimate would push the session over its limit."""
        if not self.is_within_budget(estimated_cost):
            raise BudgetExceeded(self._total_cost, self._options.limit_usd, estimated_cost)

    def get_budget_used_percent(self) -> float:
        if self._options.limit_usd <= 0:
            return 0.0
        return self._total_cost / self._options.limit_usd * 100

    def get_budget_warning(self) -> Optional[str]:
        percent = self.get_budget_used_percent()
        if percent >= 90:
            return (
                f"Warning: {percent:.0f}% of budget used "
                f"(${self._total_cost:.4f}/${self._options.limit_usd:.2f})"
            )
        if percent >= 75:
            return f"Notice: {percent:.0f}% of budget used"
        return None

    def get_usage_summary(self) -> UsageSummary:
        return UsageSummary(
            total_cost_usd=self._total_cost,
            limit_usd=self._options.limit_usd,
            remaining_budget_usd=self.get_remaining_budget(),
            query_count=self._query_count,
            total_input_tokens=self._input_tokens,
            total_output_tokens=self._output_tokens,
            by_model={m: dataclasses.replace(u) for m, u in self._by_model.items()},
            limit_enforced=self._options.enforce_limit,
            budget_used_percent=min(100, round(self.get_budget_used_percent())),
            session_started_at=self.get_session_start_time(),
            records=list(self._records),
        )

    def get_records(self) -> list[CostRecord]:
        return list(self._records)

    def get_session_start_time(self) -> datetime:
        return datetime.fromtimestamp(self._session_start, tz=timezone.utc)

    def get_session_duration(self) -> int:
        """Milliseconds since the session started."""
        return int((self._clock() - self._session_start) * 1000)

    def set_options(
        self,
        limit_usd: Optional[float] = None,
        enforce_limit: Optional[bool] = None,
        max_records: Optional[int] = None,
    ) -> None:
        if limit_usd is not None:
            self._options.limit_usd = limit_usd
        if enforce_limit is not None:
            self._options.enforce_limit = enforce_limit
        if max_records is not None:
            self._options.max_records = max_records
            self._records = deque(self._records, maxlen=max(max_records, 0))

    def get_options(self) -> CostTrackerOptions:
        return self._options.model_copy()

    def reset(self) -> None:
        """Start a new session."""
        logger.info("Cost tracker reset (previous session total $%.4f)", self._total_cost)
        self._reset_state()

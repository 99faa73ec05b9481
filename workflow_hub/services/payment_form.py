from typing import Any, Dict, Optional

from ..models.models import PaymentRequest
from .payments import CostBreakdown, PaymentWorkflow, is_potentially_fraudulent, parse_cost


NUMERIC_FIELDS = ("food_cost", "labor_cost", "vehicle_cost", "fuel_cost", "mileage")
DEFAULTS: Dict[str, Any] = {
    "title": "",
    "food_cost": 0.0,
    "labor_cost": 0.0,
    "vehicle_cost": 0.0,
    "fuel_cost": 0.0,
    "mileage": 0.0,
    "notes": "",
}


class PaymentRequestForm:
    """Draft of a payment request as a client edits it.

    Values are kept after a failed submit so the user can retry, and reset
    to defaults only once the request is stored.
    """

    def __init__(self, job_id: Any = None):
        self.job_id = job_id
        self.values: Dict[str, Any] = dict(DEFAULTS)
        self.is_submitting = False

    def change(self, name: str, value: Any) -> None:
        if name not in DEFAULTS:
            raise KeyError(name)
        self.values[name] = parse_cost(value) if name in NUMERIC_FIELDS else str(value or "")

    def reset(self) -> None:
        self.values = dict(DEFAULTS)

    @property
    def costs(self) -> CostBreakdown:
        return CostBreakdown.from_input(self.values)

    @property
    def total(self) -> float:
        return self.costs.amount

    def is_potentially_fraudulent(self, threshold: Optional[float] = None) -> bool:
        return is_potentially_fraudulent(self.costs, threshold)

    def submit(self, workflow: PaymentWorkflow) -> PaymentRequest:
        self.is_submitting = True
        try:
            payment = workflow.create(self.job_id, self.values)
        finally:
            self.is_submitting = False
        self.reset()
        return payment

from typing import Any, Dict, Optional


class PricingError(Exception):
    """
    Base class for user-visible pricing failures.

    Every subclass maps to one HTTP status and one stable `error_code`;
    the handler registered in app.main renders them as
    {"error_code": ..., "message": ..., "details": ...}.
    """

    status_code: int = 400
    error_code: str = "pricing_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ProductNotFound(PricingError):
    status_code = 404
    error_code = "product_not_found"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})


class RuleNotFound(PricingError):
    status_code = 404
    error_code = "rule_not_found"

    def __init__(self, rule_id: int):
        super().__init__(f"Pricing rule {rule_id} not found", {"rule_id": rule_id})


class ExperimentNotFound(PricingError):
    status_code = 404
    error_code = "experiment_not_found"

    def __init__(self, experiment_id: int):
        super().__init__(
            f"Experiment {experiment_id} not found", {"experiment_id": experiment_id}
        )


class SurgeNotFound(PricingError):
    status_code = 404
    error_code = "surge_not_found"

    def __init__(self, product_id: int):
        super().__init__(
            f"No active surge pricing for product {product_id}",
            {"product_id": product_id},
        )


class ConflictError(PricingError):
    """Concurrent price mutation lost the compare-and-swap race."""

    status_code = 409
    error_code = "conflict"


class ExperimentConflict(PricingError):
    status_code = 409
    error_code = "experiment_conflict"


class ExperimentStateError(PricingError):
    status_code = 409
    error_code = "experiment_invalid_state"


class SurgeValidationError(PricingError):
    status_code = 422
    error_code = "surge_validation_error"


class InvalidPriceError(PricingError):
    status_code = 422
    error_code = "invalid_price"


class InvalidForecastRequest(PricingError):
    status_code = 422
    error_code = "invalid_forecast_request"

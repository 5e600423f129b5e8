"""
Application exceptions and the FastAPI handler that renders them.

Every exception carries a stable error code so callers can branch on it
(for example, offering another PIN attempt on ERR_INVALID_PIN).
"""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class OrderNotFoundError(AppException):
    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order with ID {order_id} not found",
            error_code="ERR_NOT_FOUND_ORDER",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"order_id": order_id},
        )


class ItemNotFoundError(AppException):
    def __init__(self, order_id: str, item_id: str):
        super().__init__(
            message=f"Item {item_id} not found in order {order_id}",
            error_code="ERR_NOT_FOUND_ITEM",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"order_id": order_id, "item_id": item_id},
        )


class StaleInputError(AppException):
    """Raised when a transition guard fails against the order's current state."""

    def __init__(self, message: str, order_id: str, current_state: Dict[str, Any]):
        super().__init__(
            message=message,
            error_code="ERR_STALE_INPUT",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "current_state": current_state},
        )


class InsufficientStockError(AppException):
    def __init__(self, product_id: str, available: float, requested: float):
        super().__init__(
            message=f"Insufficient stock for {product_id}. Available: {available}, Required: {requested}",
            error_code="ERR_INSUFFICIENT_STOCK",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"product_id": product_id, "available": available, "requested": requested},
        )


class InvalidPinError(AppException):
    """Raised when the packing PIN is missing or wrong. Callers may retry."""

    def __init__(self, reason: str):
        message = "PIN is required for quantity modifications" if reason == "missing" else "Invalid PIN"
        super().__init__(
            message=message,
            error_code="ERR_INVALID_PIN",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details={"pin_required": True, "reason": reason},
        )


class ConcurrencyConflictError(AppException):
    def __init__(self, order_id: str, expected_version: int, actual_version: int):
        super().__init__(
            message="Order modified concurrently. Please refresh and retry.",
            error_code="ERR_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "order_id": order_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class QuantityValidationError(AppException):
    def __init__(self, quantity: float):
        super().__init__(
            message=f"Quantity must be greater than zero (got {quantity})",
            error_code="ERR_VALIDATION_QUANTITY",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"quantity": quantity},
        )


class GeoRouterUnavailable(AppException):
    """Raised by GeoRouter implementations; sequencing catches it and carries on."""

    def __init__(self, message: str = "Geo router is unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_GEO_ROUTER_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class DepotNotConfiguredError(AppException):
    def __init__(self):
        super().__init__(
            message="Warehouse location not configured. Set DP_DEPOT_LATITUDE and DP_DEPOT_LONGITUDE.",
            error_code="ERR_DEPOT_NOT_CONFIGURED",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )

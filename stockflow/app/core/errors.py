"""
Erreurs métier du moteur de stock / commandes fournisseurs.

Toutes sont levées DANS la transaction : `atomic()` fait le rollback avant
que l'exception n'arrive à l'appelant. Aucune n'est retentée
automatiquement (règles métier, pas des erreurs transitoires).
"""

from __future__ import annotations

from typing import Any


class StockflowError(Exception):
    default_message = "Stockflow error"
    code = "stockflow_error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


class InsufficientStock(StockflowError):
    default_message = "Insufficient stock"
    code = "insufficient_stock"


class InvalidStateTransition(StockflowError):
    default_message = "Operation not allowed in current status"
    code = "invalid_state_transition"


class CreditLimitExceeded(StockflowError):
    default_message = "Credit limit exceeded"
    code = "credit_limit_exceeded"


class ExcessReceipt(StockflowError):
    default_message = "Received quantity exceeds ordered quantity"
    code = "excess_receipt"


class NotFound(StockflowError):
    default_message = "Not found"
    code = "not_found"


class ConfigurationError(StockflowError):
    default_message = "Configuration error"
    code = "configuration_error"


class ValidationError(StockflowError):
    default_message = "Invalid input"
    code = "validation_error"

import logging

from stockflow.app.core.errors import CreditLimitExceeded, InsufficientStock, StockflowError
from stockflow.app.core.logging import configure_logging


def test_error_to_dict_carries_code_and_details():
    err = InsufficientStock("Not enough widgets", {"available": 2, "requested": 5})

    assert isinstance(err, StockflowError)
    assert str(err) == "[insufficient_stock] Not enough widgets"
    assert err.to_dict() == {
        "error": "InsufficientStock",
        "code": "insufficient_stock",
        "message": "Not enough widgets",
        "details": {"available": 2, "requested": 5},
    }


def test_error_default_message():
    err = CreditLimitExceeded()

    assert err.message == "Credit limit exceeded"
    assert "details" not in err.to_dict()


def test_configure_logging_sets_package_level():
    configure_logging("debug")

    logger = logging.getLogger("stockflow")
    assert logger.level == logging.DEBUG
    assert logger.handlers
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

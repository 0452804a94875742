"""
Typed errors raised by the inventory, transfer, sale, prescription and claim services.

    PharmaLedgerError
    +-- NotFoundError
    +-- InvalidInputError
    |   +-- InvalidQuantityError
    |       +-- InsufficientStockError
    |       +-- LimitExceededError
    +-- InvalidStateError
    +-- PrescriptionRequiredError
    +-- ConflictError

Each class carries a machine-readable ``code`` and the HTTP status the API
layer answers with. Services raise these; routers never build HTTP errors
for engine failures themselves.
"""
from typing import Any, Dict, Optional


class PharmaLedgerError(Exception):
    """Base class for every engine error."""

    code = "ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = {k: str(v) for k, v in self.details.items()}
        return body


class NotFoundError(PharmaLedgerError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[Any] = None, message: Optional[str] = None):
        if message is None:
            message = f"{entity} with ID {entity_id} not found" if entity_id is not None else f"{entity} not found"
        super().__init__(message, entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class InvalidInputError(PharmaLedgerError):
    code = "INVALID_INPUT"
    status_code = 400


class InvalidQuantityError(InvalidInputError):
    code = "INVALID_QUANTITY"


class InsufficientStockError(InvalidQuantityError):
    code = "INSUFFICIENT_STOCK"


class LimitExceededError(InvalidQuantityError):
    code = "LIMIT_EXCEEDED"


class InvalidStateError(PharmaLedgerError):
    code = "INVALID_STATE"
    status_code = 409


class PrescriptionRequiredError(PharmaLedgerError):
    code = "PRESCRIPTION_REQUIRED"
    status_code = 400


class ConflictError(PharmaLedgerError):
    code = "CONFLICT"
    status_code = 409

# leadflow/core/exceptions.py
"""
Error taxonomy shared by the services and mapped to HTTP status codes in
`leadflow.main`.

Services raise these before touching storage wherever possible; anything raised
inside `Store.transaction()` rolls the whole unit of work back.
"""


class LeadFlowError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LeadFlowError, ValueError):
    """Malformed rule or request (e.g. no agents supplied)."""
    status_code = 400


class NotFoundError(LeadFlowError, LookupError):
    """Unknown lead, agent, assignment or stage."""
    status_code = 404


class ConflictError(LeadFlowError):
    """Duplicate assignment, illegal status move or a lost compare-and-swap."""
    status_code = 409


class NoActiveStageError(ConflictError):
    """The assignment has no open pipeline stage."""


class CapacityExhaustedError(ConflictError):
    """No eligible agent or lead was left after applying the rule constraints."""


class StoreTimeoutError(LeadFlowError):
    status_code = 504

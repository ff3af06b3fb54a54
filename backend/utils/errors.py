from fastapi import HTTPException

# -------------------------------
# Engine errors
# -------------------------------
# Raised as HTTPException subclasses so the application layer can
# surface them as-is.


class EngineError(HTTPException):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(status_code=type(self).status_code, detail=detail)


class ValidationFailed(EngineError):
    status_code = 400


class InvalidTransition(ValidationFailed):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change status from {current} to {target}")
        self.current = current
        self.target = target


class NoEligibleOrders(ValidationFailed):
    def __init__(self, detail: str = "No eligible orders for payout"):
        super().__init__(detail)


class NotFound(EngineError):
    status_code = 404


class Conflict(EngineError):
    status_code = 409

# ==========================================================
#                  MLM EXCEPTIONS
# ==========================================================
# Raised by the service layer, translated to JSON responses by the blueprints.


class MLMError(Exception):
    """Base MLM exception"""
    status_code = 400
    error_type = "error"

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        data = {"success": False, "error": self.message, "type": self.error_type}
        if self.details:
            data["details"] = self.details
        return data


class UnauthorizedError(MLMError):
    status_code = 401
    error_type = "unauthorized"


class ForbiddenError(UnauthorizedError):
    status_code = 403


class NotFoundError(MLMError):
    status_code = 404
    error_type = "not_found"


class ValidationError(MLMError):
    status_code = 400
    error_type = "validation"


class BusinessRuleViolation(MLMError):
    status_code = 409
    error_type = "business_rule"


class InsufficientBalanceError(BusinessRuleViolation):
    status_code = 400


class BelowMinimumError(BusinessRuleViolation):
    status_code = 400


class DuplicateRuleError(BusinessRuleViolation):
    pass


class InvalidTransitionError(BusinessRuleViolation):

    def __init__(self, entity, current, target):
        super().__init__(
            f"Cannot move {entity} from {current.name} to {target.name}",
            {"from": current.name, "to": target.name},
        )


class InternalError(MLMError):
    status_code = 500
    error_type = "internal"

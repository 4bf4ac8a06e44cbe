"""
Errors raised by the freight services.

Every failure aborts its unit of work and is reported upward as one of these.
Views turn ``http_status`` and ``as_dict()`` into the JSON error response.
"""


class ServiceError(Exception):
    http_status = 400
    code = "service_error"

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message

    def as_dict(self):
        return {"error": self.message, "code": self.code}


class NotFound(ServiceError):
    """Load, driver, customer, settlement or invoice is missing."""

    http_status = 404
    code = "not_found"


class InvalidTransition(ServiceError):
    """The requested status is not reachable from the current one."""

    code = "invalid_transition"


class BusinessRuleViolation(ServiceError):
    """The transition is legal but a business guard refused it."""

    code = "business_rule_violation"


class ValidationError(ServiceError):
    """Bad input from the caller."""

    code = "validation_error"


class SchedulingConflict(ServiceError):
    """Assigning the driver would double-book them."""

    http_status = 409
    code = "scheduling_conflict"

    def __init__(self, message, conflicts):
        super().__init__(message)
        self.conflicts = list(conflicts)

    def as_dict(self):
        body = super().as_dict()
        body["conflicts"] = [c.as_dict() for c in self.conflicts]
        return body


class ConcurrencyContention(ServiceError):
    """Lock wait timed out or deadlocked; the whole operation may be retried."""

    http_status = 503
    code = "concurrency_contention"

"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (UI, API, background jobs) must react to failures without parsing
message strings.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured attributes carrying the data needed to act on it

Example:
    try:
        service.submit_decision(request_id, decision)
    except DuplicateDecisionError as e:
        api_response(code=e.code, approver=e.approver_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcurementKernelError:

    ProcurementKernelError (base)
    |
    +-- ValidationError
    |   +-- OrderValidationError
    |   +-- MalformedInputError
    |   +-- ReceiptValidationError
    |
    +-- AuthorizationError
    |   +-- TransitionNotPermittedError
    |   +-- UnauthorizedApproverError
    |
    +-- StateError
    |   +-- InvalidTransitionError
    |   +-- RequestClosedError
    |   +-- DuplicateDecisionError
    |   +-- DuplicateApprovalRequestError
    |
    +-- PolicyError
    |   +-- PolicyNotFoundError
    |   +-- NoUniquePolicyError
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- IntegrationEventNotFoundError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ToleranceViolationError
    |   +-- ReceiptApprovalRequiredError
    |
    +-- IntegrationError
    |   +-- ReceivingNotReadyError
    |   +-- TransientIntegrationError
    |   +-- IntegrationRetryNotAllowedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- InvalidConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | ORDER_VALIDATION_FAILED       | Order fails a business rule on transition
                | MALFORMED_INPUT               | Request-level input is unusable
                | RECEIPT_VALIDATION_FAILED     | Receipt lines are inconsistent
----------------|-------------------------------|---------------------------------------
Authorization   | UNAUTHORIZED_APPROVER         | Approver lacks an eligible role
----------------|-------------------------------|---------------------------------------
State           | INVALID_TRANSITION            | Illegal status pair
                | REQUEST_CLOSED                | Decision on a non-pending request
                | DUPLICATE_DECISION            | Same approver decided twice
                | DUPLICATE_APPROVAL_REQUEST    | Order already has an open request
----------------|-------------------------------|---------------------------------------
Policy          | POLICY_NOT_FOUND              | No policy covers the order amount
                | NO_UNIQUE_POLICY              | Ambiguous policy configuration
----------------|-------------------------------|---------------------------------------
Not found       | ORDER_NOT_FOUND               | Order id unknown
                | APPROVAL_REQUEST_NOT_FOUND    | Request id unknown
                | INTEGRATION_EVENT_NOT_FOUND   | Event id unknown
----------------|-------------------------------|---------------------------------------
Concurrency     | CONCURRENT_MODIFICATION       | CAS write lost twice in a row
----------------|-------------------------------|---------------------------------------
Tolerance       | TOLERANCE_VIOLATION           | Receipt blocked by quantity variance
                | RECEIPT_APPROVAL_REQUIRED     | Variance needs an authorized approver
----------------|-------------------------------|---------------------------------------
Integration     | RECEIVING_NOT_READY           | Order lacks receiving prerequisites
                | TRANSIENT_INTEGRATION_FAILURE | Store/transport hiccup, retryable
                | RETRY_NOT_ALLOWED             | Manual retry on a non-failed event
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying an append-only record
----------------|-------------------------------|---------------------------------------
Configuration   | INVALID_CONFIGURATION         | Snapshot failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Errors local to one unit of work (one decision, one bulk item, one
   integration event) are caught by the orchestrator and reported per item.
   Only request-level malformation aborts a whole call.

2. ConcurrencyError is retried once internally with freshly re-read state
   before it reaches the caller.

3. IntegrationError never propagates into the approval path; the bridge
   records it on the IntegrationEvent and reschedules.
"""


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ProcurementKernelError):
    """Base exception for malformed or incomplete input."""

    code: str = "VALIDATION_ERROR"


class OrderValidationError(ValidationError):
    """Order fails the business rules required to enter a status."""

    code: str = "ORDER_VALIDATION_FAILED"

    def __init__(self, order_id: str, target_status: str, problems: list[dict]):
        self.order_id = order_id
        self.target_status = target_status
        self.problems = problems
        summary = "; ".join(p["message"] for p in problems)
        super().__init__(
            f"Order {order_id} cannot enter {target_status}: {summary}"
        )


class MalformedInputError(ValidationError):
    """Request-level input is missing or unusable."""

    code: str = "MALFORMED_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed input for '{field}': {reason}")


class ReceiptValidationError(ValidationError):
    """Receipt lines are inconsistent with the order (unknown lines, etc.)."""

    code: str = "RECEIPT_VALIDATION_FAILED"

    def __init__(self, order_id: str, problems: list[str]):
        self.order_id = order_id
        self.problems = problems
        super().__init__(
            f"Receipt for order {order_id} is invalid: {'; '.join(problems)}"
        )


# Authorization exceptions


class AuthorizationError(ProcurementKernelError):
    """Base exception for actor authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class TransitionNotPermittedError(AuthorizationError):
    """Actor's role may not move an order into the target status."""

    code: str = "INSUFFICIENT_PERMISSIONS"

    def __init__(
        self,
        order_id: str,
        actor_id: str,
        role: str | None,
        target_status: str,
    ):
        self.order_id = order_id
        self.actor_id = actor_id
        self.role = role
        self.target_status = target_status
        super().__init__(
            f"Role {role!r} of {actor_id} may not move order {order_id} "
            f"to {target_status}"
        )


class UnauthorizedApproverError(AuthorizationError):
    """Approver does not hold a role eligible for this request."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(
        self,
        request_id: str,
        approver_id: str,
        role: str | None,
        eligible_roles: list[str],
    ):
        self.request_id = request_id
        self.approver_id = approver_id
        self.role = role
        self.eligible_roles = eligible_roles
        super().__init__(
            f"Approver {approver_id} (role={role}) is not authorized for "
            f"request {request_id}; eligible roles: {', '.join(eligible_roles)}"
        )


# State exceptions


class StateError(ProcurementKernelError):
    """Base exception for operations illegal in the current state."""

    code: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """Requested status change is not a legal transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        reason: str = "",
    ):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = f"Invalid transition for order {order_id}: {from_status} -> {to_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class RequestClosedError(StateError):
    """Decision submitted against a request that is no longer pending."""

    code: str = "REQUEST_CLOSED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Approval request {request_id} is closed (status={status})"
        )


class DuplicateDecisionError(StateError):
    """The same approver already decided on this request."""

    code: str = "DUPLICATE_DECISION"

    def __init__(self, request_id: str, approver_id: str):
        self.request_id = request_id
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} already decided on request {request_id}"
        )


class DuplicateApprovalRequestError(StateError):
    """The order already has an open approval request."""

    code: str = "DUPLICATE_APPROVAL_REQUEST"

    def __init__(self, order_id: str, request_id: str):
        self.order_id = order_id
        self.request_id = request_id
        super().__init__(
            f"Order {order_id} already has open approval request {request_id}"
        )


# Policy exceptions


class PolicyError(ProcurementKernelError):
    """Base exception for approval policy resolution failures."""

    code: str = "POLICY_ERROR"


class PolicyNotFoundError(PolicyError):
    """No configured policy covers the order amount and attributes."""

    code: str = "POLICY_NOT_FOUND"

    def __init__(self, amount: str, currency: str = ""):
        self.amount = amount
        self.currency = currency
        super().__init__(
            f"No approval policy covers amount {amount} {currency}".rstrip()
        )


class NoUniquePolicyError(PolicyError):
    """Several policies tie after every tie-breaker; resolution fails closed."""

    code: str = "NO_UNIQUE_POLICY"

    def __init__(self, amount: str, policy_names: list[str]):
        self.amount = amount
        self.policy_names = policy_names
        super().__init__(
            f"Ambiguous approval policies for amount {amount}: "
            f"{', '.join(policy_names)}"
        )


# Not-found exceptions


class NotFoundError(ProcurementKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Purchase order with given id was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Purchase order not found: {order_id}")


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request with given id was not found."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class IntegrationEventNotFoundError(NotFoundError):
    """Integration event with given id was not found."""

    code: str = "INTEGRATION_EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Integration event not found: {event_id}")


# Concurrency exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Compare-and-swap write found a different version than expected."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected version {expected_version} was superseded"
        )


# Tolerance exceptions


class ToleranceViolationError(ProcurementKernelError):
    """Received quantities fall outside the configured tolerance."""

    code: str = "TOLERANCE_VIOLATION"

    def __init__(self, order_id: str, issues: list[dict], message: str | None = None):
        self.order_id = order_id
        self.issues = issues
        super().__init__(
            message
            or f"Receipt for order {order_id} blocked by {len(issues)} tolerance issue(s)"
        )


class ReceiptApprovalRequiredError(ToleranceViolationError):
    """Variance is within the block threshold but needs an authorized approver."""

    code: str = "RECEIPT_APPROVAL_REQUIRED"

    def __init__(
        self,
        order_id: str,
        issues: list[dict],
        required_roles: list[str],
        approved_by: str | None = None,
    ):
        self.required_roles = required_roles
        self.approved_by = approved_by
        message = (
            f"Receipt for order {order_id} requires approval by one of "
            f"{', '.join(required_roles)}"
        )
        if approved_by:
            message = f"{message}; {approved_by} is not eligible"
        super().__init__(order_id, issues, message)


# Integration exceptions


class IntegrationError(ProcurementKernelError):
    """Base exception for downstream projection/notification failures."""

    code: str = "INTEGRATION_ERROR"


class ReceivingNotReadyError(IntegrationError):
    """Order is missing data the receiving process needs."""

    code: str = "RECEIVING_NOT_READY"

    def __init__(self, order_id: str, problems: list[str]):
        self.order_id = order_id
        self.problems = problems
        super().__init__(
            f"Order {order_id} is not ready for receiving: {'; '.join(problems)}"
        )


class TransientIntegrationError(IntegrationError):
    """Retryable failure (timeout, transport, lock contention)."""

    code: str = "TRANSIENT_INTEGRATION_FAILURE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Transient integration failure: {reason}")


class IntegrationRetryNotAllowedError(IntegrationError):
    """Manual retry requested for an event that has not failed."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, event_id: str, status: str):
        self.event_id = event_id
        self.status = status
        super().__init__(
            f"Integration event {event_id} cannot be retried manually "
            f"(status={status})"
        )


# Immutability exceptions


class ImmutabilityError(ProcurementKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Configuration exceptions


class ConfigurationError(ProcurementKernelError):
    """Base exception for configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class InvalidConfigurationError(ConfigurationError):
    """Configuration snapshot failed validation and cannot be activated."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, version: str, errors: list[str]):
        self.version = version
        self.errors = errors
        super().__init__(
            f"Configuration {version} is invalid: {'; '.join(errors)}"
        )

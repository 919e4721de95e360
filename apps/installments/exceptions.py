"""
Installment engine errors.

Every error carries a stable ``code`` so callers can render a user-facing
message without parsing text. Errors are grouped by category:

- InstallmentValidationError: bad input shape or range
- NotFoundError: unknown plan or modification id
- InvalidStateError: operation not allowed in the current lifecycle state
- DomainInvariantError: input is well-formed but breaks a financial rule
- PersistenceConflictError: concurrent write detected, safe to retry
"""


class InstallmentError(Exception):
    """Base class for all installment engine errors"""

    code = 'installment_error'
    default_message = 'Installment operation failed'
    retryable = False

    def __init__(self, message=None, code=None, **details):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
        }


class InstallmentValidationError(InstallmentError):
    code = 'validation_error'
    default_message = 'Invalid input'


class InvalidTermError(InstallmentValidationError):
    code = 'invalid_term'
    default_message = 'Number of installments must be greater than 0'


class InvalidAmountError(InstallmentValidationError):
    code = 'invalid_amount'
    default_message = 'Payment amount must be greater than 0'


class IndexOutOfRangeError(InstallmentValidationError):
    code = 'index_out_of_range'
    default_message = 'Installment index is out of range'


class InvalidModificationTypeError(InstallmentValidationError):
    code = 'invalid_modification_type'
    default_message = 'Unknown modification type'


class NotFoundError(InstallmentError):
    code = 'not_found'
    default_message = 'Record not found'


class PlanNotFoundError(NotFoundError):
    code = 'plan_not_found'
    default_message = 'Installment plan not found'


class ModificationNotFoundError(NotFoundError):
    code = 'modification_not_found'
    default_message = 'Modification not found'


class InvalidStateError(InstallmentError):
    code = 'invalid_state'
    default_message = 'Operation not allowed in the current state'


class AlreadyPaidError(InvalidStateError):
    code = 'already_paid'
    default_message = 'Installment has already been paid'


class PlanNotActiveError(InvalidStateError):
    code = 'plan_not_active'
    default_message = 'Installment plan is not active'


class DomainInvariantError(InstallmentError):
    code = 'domain_invariant_violation'
    default_message = 'Operation violates a plan invariant'


class InvalidPrincipalError(DomainInvariantError):
    code = 'invalid_principal'
    default_message = 'Financed amount must be greater than 0'


class NothingToModifyError(DomainInvariantError):
    code = 'nothing_to_modify'
    default_message = 'Plan has no unpaid installments left to modify'


class PersistenceConflictError(InstallmentError):
    code = 'persistence_conflict'
    default_message = 'Plan was modified concurrently, reload and retry'
    retryable = True

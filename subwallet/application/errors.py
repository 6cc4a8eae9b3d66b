"""
Error taxonomy shared by the use cases.

API layer maps: ValidationError -> 400, NotFoundError -> 404,
InsufficientFundsError -> 409, AllocationExecutionError -> 500.
"""


class ValidationError(ValueError):
    """Invalid input; rejected before anything is persisted"""
    pass


class AllocationRuleValidationError(ValidationError):
    pass


class BudgetValidationError(ValidationError):
    pass


class SubAccountValidationError(ValidationError):
    pass


class NotFoundError(LookupError):
    """Rule, sub-account, wallet or budget period is absent (or inactive)"""
    pass


class InsufficientFundsError(ValueError):
    """Debit or allocation would exceed the available amount"""
    pass


class AllocationExecutionError(RuntimeError):
    """The transactional write of one allocation failed"""
    pass

"""Custom exceptions for the payables application."""


class PayablesError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class UnauthorizedError(PayablesError):
    """Raised when there is no valid session."""
    def __init__(self, message="Unauthorized: you must be logged in"):
        super().__init__(message, 401)


class ForbiddenError(PayablesError):
    """Raised when a user lacks the role for an action."""
    def __init__(self, message="You do not have permission to perform this action"):
        super().__init__(message, 403)


class NotFoundError(PayablesError):
    """Raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidStateError(PayablesError):
    """Raised when an action is not valid for the invoice's current lifecycle state."""
    def __init__(self, message, current_state=None):
        payload = {'current_state': current_state} if current_state else None
        super().__init__(message, 409, payload)
        self.current_state = current_state


class InvoiceHiddenError(InvalidStateError):
    """Raised when a mutating action targets a hidden (soft-deleted) invoice."""
    def __init__(self, invoice_id=None):
        label = f'Invoice #{invoice_id}' if invoice_id else 'Invoice'
        super().__init__(f'{label} is hidden (deleted); restore it first', current_state='hidden')


class AlreadyHiddenError(InvalidStateError):
    def __init__(self, invoice_id=None):
        label = f'Invoice #{invoice_id}' if invoice_id else 'Invoice'
        super().__init__(f'{label} is already hidden', current_state='hidden')


class AlreadyOnHoldError(InvalidStateError):
    def __init__(self):
        super().__init__('Invoice is already on hold', current_state='on_hold')


class ValidationError(PayablesError):
    """Field-level validation failure. `errors` maps field name to message."""
    def __init__(self, errors, message=None):
        if isinstance(errors, str):
            errors = {'__all__': errors}
        self.errors = dict(errors)
        if message is None:
            message = '; '.join(self.errors.values())
        super().__init__(message, 422, {'errors': self.errors})


class DuplicateInvoiceNumberError(PayablesError):
    """Raised when an invoice number collides within its uniqueness scope."""
    def __init__(self, invoice_number, scope_description):
        message = f'Invoice number "{invoice_number}" already exists {scope_description}'
        super().__init__(message, 409, {'invoice_number': invoice_number, 'scope': scope_description})
        self.invoice_number = invoice_number
        self.scope_description = scope_description


class AmountExceedsBalanceError(PayablesError):
    """Raised when a payment is larger than the invoice's remaining balance."""
    def __init__(self, amount, remaining_balance):
        message = (
            f'Payment amount ({amount:.2f}) exceeds remaining balance '
            f'({remaining_balance:.2f})'
        )
        super().__init__(message, 422, {'remaining_balance': str(remaining_balance)})
        self.amount = amount
        self.remaining_balance = remaining_balance


class StaleInvoiceError(PayablesError):
    """Raised when an edit was prepared against an outdated invoice version."""
    def __init__(self, invoice_id):
        super().__init__(
            f'Invoice #{invoice_id} was modified by someone else. Reload and try again.',
            409
        )


class StorageFailureError(PayablesError):
    """Transaction or write failure. The cause is logged, the caller gets a generic message."""
    def __init__(self, message="The operation could not be saved. Please try again later."):
        super().__init__(message, 500)

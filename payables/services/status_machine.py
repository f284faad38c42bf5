"""
Invoice status state machine.

`transition` is the one place role and status rules live. Every service calls
it before mutating an invoice; it never touches the database.

Transition table (admin = admin or super_admin):

    (new)                    create          standard  -> pending_approval
    (new)                    create          admin     -> unpaid
    (new)                    create, paid    any       -> paid
    pending_approval         approve         admin     -> unpaid, or derived from balance
    pending_approval         reject          admin     -> rejected
    unpaid, partially_paid   hold            admin     -> on_hold
    on_hold                  release_hold    admin     -> derived from balance
    draft, unpaid,
    partially_paid, on_hold  edit            owner     -> pending_approval
    any                      edit            admin     -> unchanged
    unpaid, partially_paid,
    paid                     record_payment  any       -> derived from balance
    any                      record_credit   any       -> unchanged
    visible                  soft_delete     owner/adm -> unchanged (hidden)
    hidden                   restore         owner/adm -> unchanged (active)

A hidden invoice refuses everything except restore.
"""
import enum

from payables.exceptions import (
    ForbiddenError, InvalidStateError, InvoiceHiddenError, AlreadyHiddenError,
    AlreadyOnHoldError, ValidationError
)
from payables.models import InvoiceStatus, is_admin_role

REJECTION_REASON_MIN = 10
REASON_MAX = 500


class Action(enum.Enum):
    CREATE = 'create'
    APPROVE = 'approve'
    REJECT = 'reject'
    HOLD = 'hold'
    RELEASE_HOLD = 'release_hold'
    EDIT = 'edit'
    RECORD_PAYMENT = 'record_payment'
    RECORD_CREDIT_NOTE = 'record_credit_note'
    SOFT_DELETE = 'soft_delete'
    RESTORE = 'restore'


EDITABLE_BY_OWNER = (
    InvoiceStatus.DRAFT,
    InvoiceStatus.UNPAID,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.ON_HOLD,
)
HOLDABLE = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID)
PAYABLE = (InvoiceStatus.UNPAID, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID)


def _state_name(status):
    return status.value if isinstance(status, InvoiceStatus) else str(status)


def _require_admin(role, action):
    if not is_admin_role(role):
        raise ForbiddenError(f'Only admins can {action.value.replace("_", " ")} invoices')


def _clean_reason(reason):
    return (reason or '').strip()


def validate_rejection_reason(reason) -> str:
    """Trimmed reason; 10 to 500 characters."""
    cleaned = _clean_reason(reason)
    if len(cleaned) < REJECTION_REASON_MIN:
        raise ValidationError({
            'rejection_reason': f'Rejection reason must be at least {REJECTION_REASON_MIN} characters'
        })
    if len(cleaned) > REASON_MAX:
        raise ValidationError({
            'rejection_reason': f'Rejection reason cannot exceed {REASON_MAX} characters'
        })
    return cleaned


def validate_hold_reason(reason) -> str:
    cleaned = _clean_reason(reason)
    if not cleaned:
        raise ValidationError({'hold_reason': 'Hold reason is required'})
    if len(cleaned) > REASON_MAX:
        raise ValidationError({'hold_reason': f'Hold reason cannot exceed {REASON_MAX} characters'})
    return cleaned


def initial_status(role, is_paid=False) -> InvoiceStatus:
    """Status of a newly created invoice."""
    if is_paid:
        return InvoiceStatus.PAID
    if is_admin_role(role):
        return InvoiceStatus.UNPAID
    return InvoiceStatus.PENDING_APPROVAL


def transition(current, role, action, is_owner=False, hidden=False, **context):
    """
    Validate an action against the current status and return the next status.

    Args:
        current: Current InvoiceStatus (None for create)
        role: Actor role string
        action: Action (or its string value)
        is_owner: Actor created the invoice
        hidden: Invoice is soft-deleted
        **context: Action specific inputs:
            - is_paid (create)
            - reason (reject, hold)
            - derived_status (release_hold, record_payment): status computed
              from the balance by the caller

    Returns:
        InvoiceStatus after the action

    Raises:
        ForbiddenError, InvalidStateError (and subclasses), ValidationError
    """
    action = Action(action)

    if action == Action.CREATE:
        return initial_status(role, context.get('is_paid', False))

    # Hidden guard comes before any role or state rule
    if hidden:
        if action == Action.SOFT_DELETE:
            raise AlreadyHiddenError()
        if action != Action.RESTORE:
            raise InvoiceHiddenError()
    elif action == Action.RESTORE:
        raise InvalidStateError('Invoice is not hidden', current_state=_state_name(current))

    if action == Action.APPROVE:
        _require_admin(role, action)
        if current != InvoiceStatus.PENDING_APPROVAL:
            raise InvalidStateError(
                f'Only invoices pending approval can be approved (current status: {_state_name(current)})',
                current_state=_state_name(current)
            )
        return context.get('derived_status') or InvoiceStatus.UNPAID

    if action == Action.REJECT:
        _require_admin(role, action)
        if current != InvoiceStatus.PENDING_APPROVAL:
            raise InvalidStateError(
                f'Only invoices pending approval can be rejected (current status: {_state_name(current)})',
                current_state=_state_name(current)
            )
        validate_rejection_reason(context.get('reason'))
        return InvoiceStatus.REJECTED

    if action == Action.HOLD:
        _require_admin(role, action)
        if current == InvoiceStatus.ON_HOLD:
            raise AlreadyOnHoldError()
        if current not in HOLDABLE:
            raise InvalidStateError(
                f'Cannot put an invoice on hold while it is {_state_name(current)}',
                current_state=_state_name(current)
            )
        validate_hold_reason(context.get('reason'))
        return InvoiceStatus.ON_HOLD

    if action == Action.RELEASE_HOLD:
        _require_admin(role, action)
        if current != InvoiceStatus.ON_HOLD:
            raise InvalidStateError(
                f'Invoice is not on hold (current status: {_state_name(current)})',
                current_state=_state_name(current)
            )
        return context.get('derived_status') or InvoiceStatus.UNPAID

    if action == Action.EDIT:
        if is_admin_role(role):
            return current
        if not is_owner:
            raise ForbiddenError('You can only edit invoices you created')
        if current not in EDITABLE_BY_OWNER:
            raise InvalidStateError(
                f'Invoice cannot be edited while it is {_state_name(current)}',
                current_state=_state_name(current)
            )
        return InvoiceStatus.PENDING_APPROVAL

    if action == Action.RECORD_PAYMENT:
        if current not in PAYABLE:
            raise InvalidStateError(
                f'Cannot record a payment while the invoice is {_state_name(current)}',
                current_state=_state_name(current)
            )
        return context.get('derived_status') or current

    if action == Action.RECORD_CREDIT_NOTE:
        return current

    if action in (Action.SOFT_DELETE, Action.RESTORE):
        if not (is_owner or is_admin_role(role)):
            verb = 'delete' if action == Action.SOFT_DELETE else 'restore'
            raise ForbiddenError(f'You can only {verb} invoices you created')
        return current

    raise InvalidStateError(f'Unsupported action: {action.value}')

"""
Invoice validation pipeline.

Each stage is a named validator that either returns normally or raises a typed
error. `run_invoice_pipeline` runs them in a fixed order and stops at the
first stage that fails:

    1. validate_fields          ValidationError
    2. validate_date_order      ValidationError
    3. validate_references      NotFoundError / ValidationError
    4. validate_unique_scope    DuplicateInvoiceNumberError
    5. validate_initial_payment ValidationError / NotFoundError (is_paid only)

Within a stage every field is checked, so a ValidationError carries all
field messages of that stage.
"""

from payables.exceptions import ValidationError, NotFoundError, DuplicateInvoiceNumberError
from payables.models import Invoice, build_scope_key
from payables.services import master_data_service
from payables.utils.dates import parse_iso_date, today
from payables.utils.number_format import to_decimal, decimal_places

INVOICE_NUMBER_MAX = 100
INVOICE_NAME_MAX = 200
DESCRIPTION_MAX = 500
PAYMENT_REFERENCE_MAX = 100

TRUE_VALUES = ('1', 'true', 'on', 'yes')


def to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUE_VALUES


def _to_id(value, field, errors, label):
    if value is None or value == '':
        errors[field] = f'{label} is required'
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        errors[field] = f'{label} is invalid'
        return None
    if result <= 0:
        errors[field] = f'{label} is invalid'
        return None
    return result


def _to_date(value, field, errors, label, required=True):
    try:
        result = parse_iso_date(value, label)
    except ValueError as e:
        errors[field] = str(e)
        return None
    if result is None and required:
        errors[field] = f'{label} is required'
    return result


def parse_amount(value, field, errors, label='Amount'):
    """Positive Decimal with at most two decimal places, or None with an error set."""
    if value is None or value == '':
        errors[field] = f'{label} is required'
        return None
    try:
        amount = to_decimal(value)
    except ValueError:
        errors[field] = f'{label} must be a number'
        return None
    if amount <= 0:
        errors[field] = f'{label} must be greater than 0'
        return None
    if decimal_places(amount) > 2:
        errors[field] = f'{label} can have at most 2 decimal places'
        return None
    return amount


# ---------------------------------------------------------------------------
# Payment field checks (shared by the payment ledger and is_paid creation)
# ---------------------------------------------------------------------------

def check_payment_date(value, field='payment_date'):
    """Payment date is required and not in the future."""
    errors = {}
    payment_date = _to_date(value, field, errors, 'Payment date')
    if payment_date and payment_date > today():
        errors[field] = 'Payment date cannot be in the future'
    if errors:
        raise ValidationError(errors)
    return payment_date


def check_payment_amount(value, field='amount_paid'):
    errors = {}
    amount = parse_amount(value, field, errors, 'Payment amount')
    if errors:
        raise ValidationError(errors)
    return amount


def check_payment_type(session, value, field='payment_type_id'):
    """Payment type exists (NotFoundError) and is active (ValidationError)."""
    errors = {}
    payment_type_id = _to_id(value, field, errors, 'Payment type')
    if errors:
        raise ValidationError(errors)
    payment_type = master_data_service.get_payment_type(session, payment_type_id)
    if payment_type is None:
        raise NotFoundError(f'Payment type #{payment_type_id} not found')
    if not payment_type.is_active:
        raise ValidationError({field: f'Payment type "{payment_type.name}" is inactive'})
    return payment_type


def check_payment_reference(payment_type, value, field='payment_reference'):
    reference = (value or '').strip() or None
    if payment_type.requires_reference and not reference:
        raise ValidationError({field: f'A reference is required for {payment_type.name} payments'})
    if reference and len(reference) > PAYMENT_REFERENCE_MAX:
        raise ValidationError({field: f'Reference cannot exceed {PAYMENT_REFERENCE_MAX} characters'})
    return reference


# ---------------------------------------------------------------------------
# Invoice pipeline stages
# ---------------------------------------------------------------------------

def validate_fields(payload: dict) -> dict:
    """
    Stage 1: required fields, amount sign and precision, TDS required-when, lengths.

    Returns a cleaned dict with typed values.
    """
    errors = {}
    data = {}

    invoice_number = (payload.get('invoice_number') or '').strip()
    if not invoice_number:
        errors['invoice_number'] = 'Invoice number is required'
    elif len(invoice_number) > INVOICE_NUMBER_MAX:
        errors['invoice_number'] = f'Invoice number cannot exceed {INVOICE_NUMBER_MAX} characters'
    data['invoice_number'] = invoice_number

    data['is_recurring'] = to_bool(payload.get('is_recurring'))
    if data['is_recurring']:
        data['invoice_profile_id'] = _to_id(
            payload.get('invoice_profile_id'), 'invoice_profile_id', errors, 'Invoice profile'
        )
        data['period_start'] = _to_date(payload.get('period_start'), 'period_start', errors, 'Period start')
        data['period_end'] = _to_date(payload.get('period_end'), 'period_end', errors, 'Period end')
        data['invoice_name'] = None
        for field in ('vendor_id', 'entity_id', 'category_id', 'currency_id'):
            data[field] = None
    else:
        invoice_name = (payload.get('invoice_name') or '').strip()
        if not invoice_name:
            errors['invoice_name'] = 'Invoice name is required'
        elif len(invoice_name) > INVOICE_NAME_MAX:
            errors['invoice_name'] = f'Invoice name cannot exceed {INVOICE_NAME_MAX} characters'
        data['invoice_name'] = invoice_name
        data['invoice_profile_id'] = None
        data['period_start'] = None
        data['period_end'] = None
        data['vendor_id'] = _to_id(payload.get('vendor_id'), 'vendor_id', errors, 'Vendor')
        data['entity_id'] = _to_id(payload.get('entity_id'), 'entity_id', errors, 'Entity')
        data['category_id'] = _to_id(payload.get('category_id'), 'category_id', errors, 'Category')
        data['currency_id'] = _to_id(payload.get('currency_id'), 'currency_id', errors, 'Currency')

    data['invoice_date'] = _to_date(payload.get('invoice_date'), 'invoice_date', errors, 'Invoice date')
    data['due_date'] = _to_date(payload.get('due_date'), 'due_date', errors, 'Due date', required=False)

    data['invoice_amount'] = parse_amount(payload.get('invoice_amount'), 'invoice_amount', errors, 'Invoice amount')

    description = (payload.get('description') or '').strip() or None
    if description and len(description) > DESCRIPTION_MAX:
        errors['description'] = f'Description cannot exceed {DESCRIPTION_MAX} characters'
    data['description'] = description

    data['tds_applicable'] = to_bool(payload.get('tds_applicable'))
    data['tds_rounded'] = to_bool(payload.get('tds_rounded'))
    data['tds_percentage'] = None
    if data['tds_applicable']:
        raw_pct = payload.get('tds_percentage')
        if raw_pct is None or raw_pct == '':
            errors['tds_percentage'] = 'TDS percentage is required when TDS is applicable'
        else:
            try:
                pct = to_decimal(raw_pct)
            except ValueError:
                errors['tds_percentage'] = 'TDS percentage must be a number'
            else:
                if pct < 0 or pct > 100:
                    errors['tds_percentage'] = 'TDS percentage must be between 0 and 100'
                elif decimal_places(pct) > 2:
                    errors['tds_percentage'] = 'TDS percentage can have at most 2 decimal places'
                else:
                    data['tds_percentage'] = pct
    else:
        data['tds_rounded'] = False

    data['is_paid'] = to_bool(payload.get('is_paid'))
    if data['is_paid']:
        data['payment_date'] = payload.get('payment_date')
        data['payment_type_id'] = payload.get('payment_type_id')
        data['payment_reference'] = payload.get('payment_reference')

    if errors:
        raise ValidationError(errors)
    return data


def validate_date_order(data: dict) -> None:
    """Stage 2: due date not before invoice date, period end not before period start."""
    errors = {}
    if data.get('due_date') and data.get('invoice_date') and data['due_date'] < data['invoice_date']:
        errors['due_date'] = 'Due date cannot be before the invoice date'
    if data.get('is_recurring') and data.get('period_start') and data.get('period_end'):
        if data['period_end'] < data['period_start']:
            errors['period_end'] = 'Period end cannot be before period start'
    if errors:
        raise ValidationError(errors)


def _require_active(record, label, field, record_id, display):
    if record is None:
        raise NotFoundError(f'{label} #{record_id} not found')
    if not record.is_active:
        raise ValidationError({field: f'{label} "{display(record)}" is inactive'})


def validate_references(session, data: dict) -> dict:
    """
    Stage 3: every referenced master-data row exists and is active.

    Recurring invoices take vendor, entity, category and currency from their
    profile; those ids are written into `data`.

    Returns:
        Dict of resolved rows keyed by field name.
    """
    resolved = {}
    if data['is_recurring']:
        profile = master_data_service.get_invoice_profile(session, data['invoice_profile_id'])
        _require_active(profile, 'Invoice profile', 'invoice_profile_id',
                        data['invoice_profile_id'], lambda r: r.name)
        resolved['invoice_profile'] = profile
        data['vendor_id'] = profile.vendor_id
        data['entity_id'] = profile.entity_id
        data['category_id'] = profile.category_id
        data['currency_id'] = profile.currency_id

    lookups = (
        ('vendor_id', 'vendor', 'Vendor', master_data_service.get_vendor, lambda r: r.name),
        ('entity_id', 'entity', 'Entity', master_data_service.get_entity, lambda r: r.name),
        ('category_id', 'category', 'Category', master_data_service.get_category, lambda r: r.name),
        ('currency_id', 'currency', 'Currency', master_data_service.get_currency, lambda r: r.code),
    )
    for field, key, label, getter, display in lookups:
        record = getter(session, data[field])
        _require_active(record, label, field, data[field], display)
        resolved[key] = record

    return resolved


def describe_scope(data: dict, profile=None) -> str:
    if data['is_recurring']:
        name = profile.name if profile is not None else f'#{data["invoice_profile_id"]}'
        return f'for this vendor and invoice profile "{name}"'
    return f'for this vendor with invoice name "{data["invoice_name"]}"'


def validate_unique_scope(session, data: dict, exclude_id=None, profile=None) -> str:
    """
    Stage 4: invoice number is unique within its scope.

    Recurring: (invoice_number, vendor, profile). Standalone: (invoice_number,
    vendor, invoice name). An edit excludes its own id.

    Returns:
        The scope key to store on the invoice.
    """
    scope_key = build_scope_key(data['is_recurring'], data.get('invoice_profile_id'), data.get('invoice_name'))
    query = session.query(Invoice.id).filter(
        Invoice.invoice_number == data['invoice_number'],
        Invoice.vendor_id == data['vendor_id'],
        Invoice.scope_key == scope_key
    )
    if exclude_id is not None:
        query = query.filter(Invoice.id != exclude_id)
    if query.first() is not None:
        raise DuplicateInvoiceNumberError(data['invoice_number'], describe_scope(data, profile))
    return scope_key


def validate_initial_payment(session, data: dict):
    """
    Stage 5: payment details for an invoice created as already paid.

    Returns:
        (payment_date, payment_type, payment_reference) or None when not paid.
    """
    if not data.get('is_paid'):
        return None
    payment_date = check_payment_date(data.get('payment_date'))
    payment_type = check_payment_type(session, data.get('payment_type_id'))
    reference = check_payment_reference(payment_type, data.get('payment_reference'))
    return payment_date, payment_type, reference


def run_invoice_pipeline(session, payload: dict, exclude_id=None) -> dict:
    """
    Run every stage in order.

    Returns:
        Dict with:
        - data: cleaned field values (including scope_key)
        - references: resolved master-data rows
        - initial_payment: result of stage 5 (None unless is_paid)
    """
    data = validate_fields(payload)
    validate_date_order(data)
    references = validate_references(session, data)
    data['scope_key'] = validate_unique_scope(
        session, data, exclude_id=exclude_id, profile=references.get('invoice_profile')
    )
    initial_payment = validate_initial_payment(session, data)
    return {'data': data, 'references': references, 'initial_payment': initial_payment}

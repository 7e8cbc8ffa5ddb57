from marshmallow import fields, post_load, validate

from dbproxy.schemas.common import (
    BaseSchema,
    DateRangeArgsSchema,
    MessageResponseSchema,
    PaginationSchema,
    SubmitterSchema,
    phone_field,
)
from dbproxy.services.submissions import CONTACT, QUOTE, SUGGESTION

QUOTE_STATUSES = QUOTE.statuses
SUGGESTION_STATUSES = SUGGESTION.statuses
CONTACT_STATUSES = CONTACT.statuses
URGENCIES = ("immediate", "within_week", "within_month", "flexible")
CONTACT_CATEGORIES = ("general", "technical", "order", "quote", "other")
PRIORITIES = ("low", "normal", "high", "urgent")


def _required_text(label: str, max_length: int | None = None) -> fields.Str:
    validators = [validate.Regexp(r"\s*\S", error=f"{label} is required")]
    if max_length is not None:
        validators.append(validate.Length(max=max_length))
    return fields.Str(required=True, validate=validators)


def _optional_text(max_length: int | None = None) -> fields.Str:
    if max_length is None:
        return fields.Str(required=False)
    return fields.Str(required=False, validate=validate.Length(max=max_length))


class _TrackingFields(BaseSchema):
    source = _optional_text(50)
    userAgent = _optional_text()
    ipAddress = _optional_text(45)


class QuoteRequestSchema(_TrackingFields):
    email = fields.Email(required=True, error_messages={"invalid": "Invalid email address"})
    firstName = _required_text("First name", 100)
    lastName = _required_text("Last name", 100)
    company = _optional_text(255)
    phone = phone_field(required=False)

    partType = _required_text("Part type", 100)
    partNumber = _optional_text(100)
    manufacturer = _optional_text(255)
    quantity = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="Quantity must be a positive number"),
    )
    description = _optional_text()

    urgency = fields.Str(required=True, validate=validate.OneOf(URGENCIES))
    budget = _optional_text(100)
    additionalNotes = _optional_text()

    emailUpdates = fields.Bool(load_default=True)
    newsletter = fields.Bool(load_default=False)


class PartSuggestionSchema(_TrackingFields):
    email = fields.Email(required=True, error_messages={"invalid": "Invalid email address"})
    firstName = _required_text("First name", 100)
    lastName = _required_text("Last name", 100)
    company = _optional_text(255)

    partName = _required_text("Part name", 255)
    partNumber = _optional_text(100)
    manufacturer = _optional_text(255)
    category = _optional_text(100)
    description = _optional_text()

    whyImportant = _optional_text()
    availabilityInfo = _optional_text()
    additionalNotes = _optional_text()


class ContactSupportSchema(_TrackingFields):
    email = fields.Email(required=True, error_messages={"invalid": "Invalid email address"})
    name = _required_text("Name", 200)
    company = _optional_text(255)
    phone = phone_field(required=False)

    subject = _required_text("Subject", 255)
    message = _required_text("Message")
    category = fields.Str(load_default="general", validate=validate.OneOf(CONTACT_CATEGORIES))
    priority = fields.Str(load_default="normal", validate=validate.OneOf(PRIORITIES))

    partId = _optional_text(50)
    partName = _optional_text(255)

    @post_load
    def split_name(self, data, **kwargs):
        # users stores first/last separately; everything after the first
        # whitespace run is the last name.
        parts = data["name"].strip().split(None, 1)
        data["firstName"] = parts[0] if parts else data["name"]
        data["lastName"] = parts[1] if len(parts) > 1 else None
        return data


class QuoteFiltersSchema(DateRangeArgsSchema):
    status = fields.Str(validate=validate.OneOf(QUOTE_STATUSES))
    urgency = fields.Str(validate=validate.OneOf(URGENCIES))


class SuggestionFiltersSchema(DateRangeArgsSchema):
    status = fields.Str(validate=validate.OneOf(SUGGESTION_STATUSES))
    category = fields.Str()


class ContactFiltersSchema(DateRangeArgsSchema):
    status = fields.Str(validate=validate.OneOf(CONTACT_STATUSES))
    priority = fields.Str(validate=validate.OneOf(PRIORITIES))
    category = fields.Str(validate=validate.OneOf(CONTACT_CATEGORIES))
    assignedTo = fields.Str()


class UpdateQuoteStatusSchema(BaseSchema):
    status = fields.Str(required=True, validate=validate.OneOf(QUOTE_STATUSES))
    quotedPrice = fields.Float(validate=validate.Range(min=0, min_inclusive=False))
    quoteValidUntil = fields.DateTime()
    adminNotes = fields.Str()


class UpdateSuggestionStatusSchema(BaseSchema):
    status = fields.Str(required=True, validate=validate.OneOf(SUGGESTION_STATUSES))
    adminNotes = fields.Str()


class UpdateContactStatusSchema(BaseSchema):
    status = fields.Str(required=True, validate=validate.OneOf(CONTACT_STATUSES))
    assignedTo = fields.Str(validate=validate.Length(max=100))
    responseMessage = fields.Str()


class QuoteRecordSchema(SubmitterSchema):
    id = fields.Int()
    reference_id = fields.Str()
    part_type = fields.Str(allow_none=True)
    part_number = fields.Str(allow_none=True)
    manufacturer = fields.Str(allow_none=True)
    quantity = fields.Int()
    description = fields.Str(allow_none=True)
    urgency = fields.Str(allow_none=True)
    budget_range = fields.Str(allow_none=True)
    additional_notes = fields.Str(allow_none=True)
    email_updates = fields.Bool()
    newsletter = fields.Bool()
    status = fields.Str()
    quoted_price = fields.Float(allow_none=True)
    quote_valid_until = fields.Raw(allow_none=True)
    admin_notes = fields.Str(allow_none=True)
    source = fields.Str(allow_none=True)
    user_agent = fields.Str(allow_none=True)
    ip_address = fields.Str(allow_none=True)
    created_at = fields.Raw()
    updated_at = fields.Raw()


class SuggestionRecordSchema(SubmitterSchema):
    id = fields.Int()
    reference_id = fields.Str()
    part_name = fields.Str()
    part_number = fields.Str(allow_none=True)
    manufacturer = fields.Str(allow_none=True)
    category = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    why_important = fields.Str(allow_none=True)
    availability_info = fields.Str(allow_none=True)
    additional_notes = fields.Str(allow_none=True)
    status = fields.Str()
    admin_notes = fields.Str(allow_none=True)
    source = fields.Str(allow_none=True)
    user_agent = fields.Str(allow_none=True)
    ip_address = fields.Str(allow_none=True)
    created_at = fields.Raw()
    updated_at = fields.Raw()


class ContactRecordSchema(SubmitterSchema):
    id = fields.Int()
    reference_id = fields.Str()
    subject = fields.Str()
    message = fields.Str()
    category = fields.Str()
    priority = fields.Str()
    status = fields.Str()
    assigned_to = fields.Str(allow_none=True)
    response_message = fields.Str(allow_none=True)
    resolved_at = fields.Raw(allow_none=True)
    part_id = fields.Str(allow_none=True)
    part_name = fields.Str(allow_none=True)
    source = fields.Str(allow_none=True)
    user_agent = fields.Str(allow_none=True)
    ip_address = fields.Str(allow_none=True)
    created_at = fields.Raw()
    updated_at = fields.Raw()


def _list_response(record_schema, name: str):
    return type(
        name,
        (MessageResponseSchema,),
        {
            "data": fields.List(fields.Nested(record_schema)),
            "pagination": fields.Nested(PaginationSchema),
        },
    )


def _detail_response(record_schema, name: str):
    return type(name, (MessageResponseSchema,), {"data": fields.Nested(record_schema)})


QuoteListResponseSchema = _list_response(QuoteRecordSchema, "QuoteListResponseSchema")
QuoteDetailResponseSchema = _detail_response(QuoteRecordSchema, "QuoteDetailResponseSchema")
SuggestionListResponseSchema = _list_response(
    SuggestionRecordSchema, "SuggestionListResponseSchema"
)
SuggestionDetailResponseSchema = _detail_response(
    SuggestionRecordSchema, "SuggestionDetailResponseSchema"
)
ContactListResponseSchema = _list_response(ContactRecordSchema, "ContactListResponseSchema")
ContactDetailResponseSchema = _detail_response(
    ContactRecordSchema, "ContactDetailResponseSchema"
)

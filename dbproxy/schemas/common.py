from marshmallow import EXCLUDE, Schema, fields, validate

PHONE_PATTERN = r"^[0-9\s\-\+\(\)]+$"


class BaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE


def phone_field(**kwargs) -> fields.Str:
    return fields.Str(
        validate=validate.Regexp(PHONE_PATTERN, error="Invalid phone number"), **kwargs
    )


class PaginationArgsSchema(BaseSchema):
    page = fields.Int(load_default=1)
    limit = fields.Int(load_default=50)


class DateRangeArgsSchema(PaginationArgsSchema):
    startDate = fields.DateTime(required=False)
    endDate = fields.DateTime(required=False)


class PaginationSchema(Schema):
    page = fields.Int()
    limit = fields.Int()
    total = fields.Int()
    totalPages = fields.Int()


class MessageResponseSchema(Schema):
    success = fields.Bool()
    message = fields.Str()


class StatusChangeSchema(Schema):
    id = fields.Int()
    reference_id = fields.Str()
    status = fields.Str()
    updated_at = fields.Raw()


class StatusChangeResponseSchema(MessageResponseSchema):
    data = fields.Nested(StatusChangeSchema)


class SubmissionReceiptSchema(Schema):
    id = fields.Str()
    status = fields.Str()
    created_at = fields.Raw()


class SubmissionReceiptResponseSchema(MessageResponseSchema):
    data = fields.Nested(SubmissionReceiptSchema)


class SubmitterSchema(Schema):
    email = fields.Str()
    first_name = fields.Str(allow_none=True)
    last_name = fields.Str(allow_none=True)
    company = fields.Str(allow_none=True)
    phone = fields.Str(allow_none=True)

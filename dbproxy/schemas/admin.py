from marshmallow import Schema, fields, validate

from dbproxy.schemas.common import BaseSchema, MessageResponseSchema


class AdminLoginSchema(BaseSchema):
    email = fields.Email(required=True, error_messages={"invalid": "Invalid email address"})
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, error="Password must be at least 8 characters"),
    )


class AdminSummarySchema(Schema):
    id = fields.Int()
    email = fields.Str()


class AdminSchema(AdminSummarySchema):
    role = fields.Str()


class AdminLoginDataSchema(Schema):
    token = fields.Str()
    admin = fields.Nested(AdminSummarySchema)


class AdminLoginResponseSchema(MessageResponseSchema):
    data = fields.Nested(AdminLoginDataSchema)


class AdminVerifyDataSchema(Schema):
    admin = fields.Nested(AdminSchema)


class AdminVerifyResponseSchema(MessageResponseSchema):
    data = fields.Nested(AdminVerifyDataSchema)

from marshmallow import Schema, fields

from dbproxy.schemas.common import (
    BaseSchema,
    MessageResponseSchema,
    PaginationArgsSchema,
    PaginationSchema,
)


class PartsQueryArgsSchema(PaginationArgsSchema):
    search = fields.Str()
    category = fields.Str()
    manufacturer = fields.Str()
    minPrice = fields.Float()
    maxPrice = fields.Float()
    availability = fields.Str()
    featured = fields.Bool()


class FeaturedArgsSchema(BaseSchema):
    limit = fields.Int(load_default=None)


class PartSchema(Schema):
    id = fields.Int()
    sku = fields.Str()
    name = fields.Str()
    description = fields.Str(allow_none=True)
    category = fields.Str(allow_none=True)
    manufacturer = fields.Str(allow_none=True)
    specifications = fields.Raw(allow_none=True)
    image_urls = fields.Raw(allow_none=True)
    base_price = fields.Float(allow_none=True)
    currency = fields.Str(allow_none=True)
    availability_status = fields.Str(allow_none=True)
    stock_quantity = fields.Int(allow_none=True)
    featured = fields.Bool()
    featured_date = fields.Raw(allow_none=True)
    tags = fields.Raw(allow_none=True)
    created_at = fields.Raw()
    updated_at = fields.Raw()


class PartListResponseSchema(MessageResponseSchema):
    data = fields.List(fields.Nested(PartSchema))
    pagination = fields.Nested(PaginationSchema)


class FeaturedPartsResponseSchema(MessageResponseSchema):
    data = fields.List(fields.Nested(PartSchema))


class PartDetailResponseSchema(MessageResponseSchema):
    data = fields.Nested(PartSchema)


class CategoryCountSchema(Schema):
    category = fields.Str()
    count = fields.Int()


class ManufacturerCountSchema(Schema):
    manufacturer = fields.Str()
    count = fields.Int()


class CategoryCountsResponseSchema(MessageResponseSchema):
    data = fields.List(fields.Nested(CategoryCountSchema))


class ManufacturerCountsResponseSchema(MessageResponseSchema):
    data = fields.List(fields.Nested(ManufacturerCountSchema))

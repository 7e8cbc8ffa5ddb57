from __future__ import annotations

from flask.views import MethodView

from dbproxy.routes.base import Blueprint, parts_catalog
from dbproxy.schemas.parts import (
    CategoryCountsResponseSchema,
    FeaturedArgsSchema,
    FeaturedPartsResponseSchema,
    ManufacturerCountsResponseSchema,
    PartDetailResponseSchema,
    PartListResponseSchema,
    PartsQueryArgsSchema,
)

parts_blp = Blueprint(
    "parts",
    "parts",
    url_prefix="/api/parts",
    description="Browse and search the parts catalog",
)


@parts_blp.route("")
class PartsResource(MethodView):
    @parts_blp.arguments(PartsQueryArgsSchema, location="query")
    @parts_blp.response(200, PartListResponseSchema)
    def get(self, args):
        rows, pagination = parts_catalog().search(
            args, page=args.get("page"), limit=args.get("limit")
        )
        return {"success": True, "data": rows, "pagination": pagination}


@parts_blp.route("/featured")
class FeaturedPartsResource(MethodView):
    @parts_blp.arguments(FeaturedArgsSchema, location="query")
    @parts_blp.response(200, FeaturedPartsResponseSchema)
    def get(self, args):
        return {"success": True, "data": parts_catalog().featured(args.get("limit"))}


@parts_blp.route("/meta/categories")
class PartCategoriesResource(MethodView):
    @parts_blp.response(200, CategoryCountsResponseSchema)
    def get(self):
        return {"success": True, "data": parts_catalog().facet_counts("categories")}


@parts_blp.route("/meta/manufacturers")
class PartManufacturersResource(MethodView):
    @parts_blp.response(200, ManufacturerCountsResponseSchema)
    def get(self):
        return {"success": True, "data": parts_catalog().facet_counts("manufacturers")}


@parts_blp.route("/<string:identifier>")
class PartResource(MethodView):
    @parts_blp.response(200, PartDetailResponseSchema)
    def get(self, identifier):
        return {"success": True, "data": parts_catalog().get(identifier)}

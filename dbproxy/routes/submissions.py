from __future__ import annotations

from dataclasses import dataclass

from flask.views import MethodView
from marshmallow import Schema

from dbproxy.routes.base import Blueprint, submission_service
from dbproxy.schemas.common import StatusChangeResponseSchema, SubmissionReceiptResponseSchema
from dbproxy.schemas.submissions import (
    ContactDetailResponseSchema,
    ContactFiltersSchema,
    ContactListResponseSchema,
    ContactSupportSchema,
    PartSuggestionSchema,
    QuoteDetailResponseSchema,
    QuoteFiltersSchema,
    QuoteListResponseSchema,
    QuoteRequestSchema,
    SuggestionDetailResponseSchema,
    SuggestionFiltersSchema,
    SuggestionListResponseSchema,
    UpdateContactStatusSchema,
    UpdateQuoteStatusSchema,
    UpdateSuggestionStatusSchema,
)
from dbproxy.services.submissions import CONTACT, QUOTE, SUGGESTION, SubmissionKind


@dataclass(frozen=True)
class SubmissionEndpoints:
    kind: SubmissionKind
    blueprint_name: str
    url_prefix: str
    description: str
    create_schema: type[Schema]
    filters_schema: type[Schema]
    update_schema: type[Schema]
    list_response: type[Schema]
    detail_response: type[Schema]


SUBMISSION_ENDPOINTS = (
    SubmissionEndpoints(
        kind=QUOTE,
        blueprint_name="quotes",
        url_prefix="/api/quotes",
        description="Submit and manage quote requests",
        create_schema=QuoteRequestSchema,
        filters_schema=QuoteFiltersSchema,
        update_schema=UpdateQuoteStatusSchema,
        list_response=QuoteListResponseSchema,
        detail_response=QuoteDetailResponseSchema,
    ),
    SubmissionEndpoints(
        kind=SUGGESTION,
        blueprint_name="suggestions",
        url_prefix="/api/suggestions",
        description="Submit and manage part suggestions",
        create_schema=PartSuggestionSchema,
        filters_schema=SuggestionFiltersSchema,
        update_schema=UpdateSuggestionStatusSchema,
        list_response=SuggestionListResponseSchema,
        detail_response=SuggestionDetailResponseSchema,
    ),
    SubmissionEndpoints(
        kind=CONTACT,
        blueprint_name="contact_support",
        url_prefix="/api/contact-support",
        description="Submit and manage contact-support requests",
        create_schema=ContactSupportSchema,
        filters_schema=ContactFiltersSchema,
        update_schema=UpdateContactStatusSchema,
        list_response=ContactListResponseSchema,
        detail_response=ContactDetailResponseSchema,
    ),
)


def build_submission_blueprint(endpoints: SubmissionEndpoints) -> Blueprint:
    kind = endpoints.kind
    blp = Blueprint(
        endpoints.blueprint_name,
        endpoints.blueprint_name,
        url_prefix=endpoints.url_prefix,
        description=endpoints.description,
    )

    @blp.route("")
    class SubmissionCollection(MethodView):
        @blp.arguments(endpoints.create_schema)
        @blp.response(200, SubmissionReceiptResponseSchema)
        def post(self, payload):
            record = submission_service().submit(kind, payload)
            return {
                "success": True,
                "message": f"{kind.label} created successfully",
                "data": {
                    "id": record["reference_id"],
                    "status": record["status"],
                    "created_at": record["created_at"],
                },
            }

        @blp.arguments(endpoints.filters_schema, location="query")
        @blp.response(200, endpoints.list_response)
        def get(self, args):
            rows, pagination = submission_service().list_records(
                kind, args, page=args.get("page"), limit=args.get("limit")
            )
            return {"success": True, "data": rows, "pagination": pagination}

    @blp.route("/<string:reference_id>")
    class SubmissionItem(MethodView):
        @blp.response(200, endpoints.detail_response)
        def get(self, reference_id):
            return {
                "success": True,
                "data": submission_service().get_by_reference(kind, reference_id),
            }

        @blp.arguments(endpoints.update_schema)
        @blp.response(200, StatusChangeResponseSchema)
        def patch(self, changes, reference_id):
            row = submission_service().update_status(kind, reference_id, changes)
            return {
                "success": True,
                "message": f"{kind.label} updated successfully",
                "data": row,
            }

    return blp

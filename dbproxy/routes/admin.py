from __future__ import annotations

from flask import request
from flask.views import MethodView

from dbproxy.routes.base import Blueprint, admin_authenticator
from dbproxy.schemas.admin import (
    AdminLoginResponseSchema,
    AdminLoginSchema,
    AdminVerifyResponseSchema,
)
from dbproxy.schemas.common import MessageResponseSchema
from dbproxy.services.admin_auth import bearer_token

admin_blp = Blueprint(
    "admin",
    "admin",
    url_prefix="/api/admin",
    description="Admin login and token checks",
)


@admin_blp.route("/login")
class AdminLoginResource(MethodView):
    @admin_blp.arguments(AdminLoginSchema)
    @admin_blp.response(200, AdminLoginResponseSchema)
    def post(self, data):
        token, admin = admin_authenticator().login(data["email"], data["password"])
        return {
            "success": True,
            "message": "Login successful",
            "data": {"token": token, "admin": admin},
        }


@admin_blp.route("/logout")
class AdminLogoutResource(MethodView):
    @admin_blp.response(200, MessageResponseSchema)
    def post(self):
        admin_authenticator().logout(bearer_token(request.headers.get("Authorization")))
        return {"success": True, "message": "Logout successful"}


@admin_blp.route("/verify")
class AdminVerifyResource(MethodView):
    @admin_blp.response(200, AdminVerifyResponseSchema)
    def get(self):
        admin = admin_authenticator().verify(
            bearer_token(request.headers.get("Authorization"))
        )
        return {"success": True, "message": "Token is valid", "data": {"admin": admin}}

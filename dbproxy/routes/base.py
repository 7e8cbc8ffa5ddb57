from __future__ import annotations

from flask import current_app
from flask_smorest import Blueprint as SmorestBlueprint
from webargs.flaskparser import FlaskParser


class ApiArgumentsParser(FlaskParser):
    # Malformed input is a 400 here, not webargs' default 422.
    DEFAULT_VALIDATION_STATUS = 400


class Blueprint(SmorestBlueprint):
    ARGUMENTS_PARSER = ApiArgumentsParser()


def datastore():
    return current_app.extensions["datastore"]


def submission_service():
    return current_app.extensions["submissions"]


def parts_catalog():
    return current_app.extensions["parts_catalog"]


def admin_authenticator():
    return current_app.extensions["admin_auth"]

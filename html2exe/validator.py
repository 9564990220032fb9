"""Schema validation for generated project metadata."""

from __future__ import annotations

import json
from importlib import resources

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from html2exe.errors import MaterializeError

# --- Schema loaders ---------------------------------------------------------


def _load_schema(package: str, resource_name: str) -> dict:
    with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as f:
        return json.load(f)


def _electron_package_schema() -> dict:
    return _load_schema("html2exe.schema", "electron-package.schema.json")


def _wails_config_schema() -> dict:
    return _load_schema("html2exe.schema", "wails.schema.json")


# --- Public validators ------------------------------------------------------


def _validate(schema: dict, data: dict, what: str) -> None:
    try:
        Draft202012Validator(schema).validate(data)
    except ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise MaterializeError(f"Generated {what} is invalid at {location}: {exc.message}") from exc


def validate_electron_package(data: dict) -> None:
    _validate(_electron_package_schema(), data, "package.json")


def validate_wails_config(data: dict) -> None:
    _validate(_wails_config_schema(), data, "wails.json")

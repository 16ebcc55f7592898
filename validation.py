"""Declarative request validation.

A schema is an ordered list of ``Field`` records, each holding the rules for
one input key. ``Validator`` evaluates every field of the schema against a
payload and returns a mapping of field name to error messages; it never
stops at the first failing field.

Rules follow the usual conventions of form-request validation: an absent or
empty value only triggers ``Required``; optional fields that are absent are
skipped; type rules (``String``, ``Integer``, ``Array``, ``Image``) stop the
remaining rules of their field when they fail.
"""
import os
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

import models
from errors import ValidationFailed

_email_adapter = TypeAdapter(EmailStr)

IMAGE_MIMES = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}


def label(name: str) -> str:
    return name.replace("_", " ")


def is_missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, tuple, dict)) and len(value) == 0:
        return True
    if isinstance(value, UploadFile) and not value.filename:
        return True
    return False


def upload_size(upload: UploadFile) -> int:
    """Size of an uploaded file in bytes"""
    if getattr(upload, "size", None) is not None:
        return upload.size
    current = upload.file.tell()
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(current)
    return size


@dataclass
class ValidationContext:
    data: dict
    db: Session | None = None


class Rule:
    """One validation rule. check() yields (key, message) pairs for each failure."""
    bail = False

    def check(self, name: str, value: Any, ctx: ValidationContext):
        message = self.message(name, value, ctx)
        return [(name, message)] if message else []

    def message(self, name: str, value: Any, ctx: ValidationContext):
        return None


class Required(Rule):
    def message(self, name, value, ctx):
        if is_missing(value):
            return f"The {label(name)} field is required."
        return None


class Nullable(Rule):
    """Marks a field optional; absent or null values skip all other rules."""


class String(Rule):
    bail = True

    def message(self, name, value, ctx):
        if not isinstance(value, str):
            return f"The {label(name)} field must be a string."
        return None


class Integer(Rule):
    bail = True

    def message(self, name, value, ctx):
        if isinstance(value, bool):
            return f"The {label(name)} field must be an integer."
        if isinstance(value, int):
            return None
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return None
        return f"The {label(name)} field must be an integer."


class Array(Rule):
    bail = True

    def message(self, name, value, ctx):
        if not isinstance(value, (list, tuple)):
            return f"The {label(name)} field must be an array."
        return None


class Max(Rule):
    """Maximum string length in characters."""

    def __init__(self, limit: int):
        self.limit = limit

    def message(self, name, value, ctx):
        if isinstance(value, str) and len(value) > self.limit:
            return f"The {label(name)} field must not be greater than {self.limit} characters."
        return None


class Min(Rule):
    """Minimum string length in characters."""

    def __init__(self, limit: int):
        self.limit = limit

    def message(self, name, value, ctx):
        if isinstance(value, str) and len(value) < self.limit:
            return f"The {label(name)} field must be at least {self.limit} characters."
        return None


class Email(Rule):
    def message(self, name, value, ctx):
        try:
            _email_adapter.validate_python(value)
        except PydanticValidationError:
            return f"The {label(name)} field must be a valid email address."
        return None


class Confirmed(Rule):
    """The value must equal the <name>_confirmation field."""

    def message(self, name, value, ctx):
        if ctx.data.get(f"{name}_confirmation") != value:
            return f"The {label(name)} field confirmation does not match."
        return None


class Unique(Rule):
    """No other row of model may hold this value in column; ignore_id excludes one row."""

    def __init__(self, model, column: str | None = None, ignore_id: int | None = None):
        self.model = model
        self.column = column
        self.ignore_id = ignore_id

    def check(self, name, value, ctx):
        column = getattr(self.model, self.column or name)
        query = ctx.db.query(self.model.id).filter(column == value)
        if self.ignore_id is not None:
            query = query.filter(self.model.id != self.ignore_id)
        if query.first() is not None:
            return [(name, f"The {label(name)} has already been taken.")]
        return []


class Exists(Rule):
    """The value must be the id of an existing row of model."""

    def __init__(self, model):
        self.model = model

    def message(self, name, value, ctx):
        try:
            key = int(value)
        except (TypeError, ValueError):
            return f"The selected {label(name)} is invalid."
        if ctx.db.get(self.model, key) is None:
            return f"The selected {label(name)} is invalid."
        return None


class Each(Rule):
    """Applies rules to every element of an array, reporting under <name>.<index>."""

    def __init__(self, *rules: Rule):
        self.rules = rules

    def check(self, name, value, ctx):
        failures = []
        for index, item in enumerate(value):
            key = f"{name}.{index}"
            for rule in self.rules:
                found = rule.check(key, item, ctx)
                failures.extend(found)
                if found and rule.bail:
                    break
        return failures


class Image(Rule):
    """An uploaded image with one of the given extensions, at most max_kilobytes large."""
    bail = True

    def __init__(self, mimes=("jpeg", "png", "jpg", "gif", "svg"), max_kilobytes: int = 2048):
        self.mimes = tuple(mimes)
        self.max_kilobytes = max_kilobytes

    def check(self, name, value, ctx):
        if not isinstance(value, UploadFile):
            return [(name, f"The {label(name)} field must be an image.")]
        failures = []
        extension = os.path.splitext(value.filename or "")[1].lstrip(".").lower()
        allowed_types = {IMAGE_MIMES[m] for m in self.mimes if m in IMAGE_MIMES}
        content_type = (value.content_type or "").split(";")[0].strip().lower()
        if extension not in self.mimes or (content_type and content_type not in allowed_types):
            failures.append((name, f"The {label(name)} field must be a file of type: {', '.join(self.mimes)}."))
        if upload_size(value) > self.max_kilobytes * 1024:
            failures.append((name, f"The {label(name)} field must not be greater than {self.max_kilobytes} kilobytes."))
        return failures


@dataclass
class Field:
    name: str
    rules: list = dataclass_field(default_factory=list)
    cast: Callable | None = None

    @property
    def required(self) -> bool:
        return any(isinstance(rule, Required) for rule in self.rules)


class Validator:
    """Evaluates a schema against a payload."""

    def __init__(self, schema: list[Field], db: Session | None = None):
        self.schema = schema
        self.db = db

    def errors(self, data: dict) -> dict[str, list[str]]:
        ctx = ValidationContext(data=data, db=self.db)
        errors: dict[str, list[str]] = {}
        for entry in self.schema:
            value = data.get(entry.name)
            if is_missing(value):
                if entry.required:
                    errors.setdefault(entry.name, []).append(f"The {label(entry.name)} field is required.")
                continue
            for rule in entry.rules:
                if isinstance(rule, (Required, Nullable)):
                    continue
                failures = rule.check(entry.name, value, ctx)
                for key, message in failures:
                    errors.setdefault(key, []).append(message)
                if failures and rule.bail:
                    break
        return errors

    def validated(self, data: dict) -> dict:
        """The declared fields present in data, cast where the field has a cast"""
        result = {}
        for entry in self.schema:
            value = data.get(entry.name)
            if is_missing(value):
                continue
            result[entry.name] = entry.cast(value) if entry.cast else value
        return result

    def validate(self, data: dict, message: str = "Validation Error", status_code: int = 422) -> dict:
        """Return the validated data or raise ValidationFailed with every field error"""
        errors = self.errors(data)
        if errors:
            raise ValidationFailed(message, errors=errors, status_code=status_code)
        return self.validated(data)


def _int_list(values):
    return [int(value) for value in values]


# --- Rule sets ---

def registration_rules() -> list[Field]:
    return [
        Field("name", [Required(), String(), Max(255)]),
        Field("email", [Required(), String(), Email(), Max(255), Unique(models.User)]),
        Field("password", [Required(), String(), Min(8), Confirmed()]),
    ]


def login_rules() -> list[Field]:
    return [
        Field("email", [Required(), String(), Email()]),
        Field("password", [Required(), String()]),
    ]


def post_rules(post_id: int | None = None) -> list[Field]:
    """Rules for creating a post, or updating post_id when given"""
    title_rules = [Required(), String(), Max(255)]
    if post_id is not None:
        title_rules.append(Unique(models.Post, ignore_id=post_id))
    return [
        Field("title", title_rules),
        Field("content", [Required(), String()]),
        Field("post_categories", [Required(), Array(), Each(Integer(), Exists(models.PostCategory))],
              cast=_int_list),
        Field("image", [Nullable(), Image()]),
    ]


def post_category_rules() -> list[Field]:
    return [Field("name", [Required(), String(), Max(100)])]


def user_update_rules(user_id: int) -> list[Field]:
    return [
        Field("name", [Required(), String(), Max(255)]),
        Field("email", [Required(), String(), Email(), Max(255), Unique(models.User, ignore_id=user_id)]),
    ]

"""The declarative validator and its rules."""

import io

import pytest
from starlette.datastructures import Headers, UploadFile

import models
from errors import ValidationFailed
from validation import (Array, Confirmed, Each, Email, Exists, Field, Image,
                        Integer, Max, Min, Nullable, Required, String, Unique,
                        Validator, post_rules)


def upload(name, content_type, size=16):
    return UploadFile(file=io.BytesIO(b"x" * size), size=size, filename=name,
                      headers=Headers({"content-type": content_type}))


def test_collects_errors_for_every_field():
    schema = [
        Field("name", [Required(), String(), Max(5)]),
        Field("nick", [Required()]),
        Field("bio", [Nullable(), String()]),
    ]

    errors = Validator(schema).errors({"name": "too long a name", "bio": None})

    assert errors == {
        "name": ["The name field must not be greater than 5 characters."],
        "nick": ["The nick field is required."],
    }


def test_blank_string_counts_as_missing():
    errors = Validator([Field("title", [Required(), String()])]).errors({"title": "   "})
    assert errors == {"title": ["The title field is required."]}


def test_type_rule_stops_the_field():
    errors = Validator([Field("name", [Required(), String(), Max(3)])]).errors({"name": 12345})
    assert errors == {"name": ["The name field must be a string."]}


def test_independent_rules_all_report():
    schema = [Field("password", [Required(), String(), Min(8), Confirmed()])]

    errors = Validator(schema).errors({"password": "short", "password_confirmation": "different"})

    assert errors["password"] == [
        "The password field must be at least 8 characters.",
        "The password field confirmation does not match.",
    ]


def test_email_rule():
    schema = [Field("email", [Email()])]
    assert Validator(schema).errors({"email": "someone@example.com"}) == {}
    assert Validator(schema).errors({"email": "someone@"}) == {
        "email": ["The email field must be a valid email address."]
    }


def test_each_reports_by_index():
    schema = [Field("ids", [Required(), Array(), Each(Integer())])]

    errors = Validator(schema).errors({"ids": [1, "2", "x", True]})

    assert errors == {
        "ids.2": ["The ids.2 field must be an integer."],
        "ids.3": ["The ids.3 field must be an integer."],
    }


def test_array_rule():
    errors = Validator([Field("ids", [Required(), Array()])]).errors({"ids": "1"})
    assert errors == {"ids": ["The ids field must be an array."]}


def test_validate_raises_with_status_and_message():
    validator = Validator([Field("name", [Required()])])

    with pytest.raises(ValidationFailed) as info:
        validator.validate({}, "Validation failed.", 400)

    assert info.value.status_code == 400
    assert info.value.message == "Validation failed."
    assert info.value.errors == {"name": ["The name field is required."]}


def test_validated_keeps_declared_fields_and_casts():
    validator = Validator([
        Field("title", [Required()]),
        Field("ids", [Required()], cast=lambda values: [int(v) for v in values]),
    ])

    assert validator.validated({"title": "t", "ids": ["1", "2"], "extra": "x"}) == {"title": "t", "ids": [1, 2]}


def test_unique_and_exists(db, make_user, make_category):
    user = make_user(email="taken@example.com")
    category = make_category()

    unique = Validator([Field("email", [Unique(models.User)])], db)
    assert unique.errors({"email": "taken@example.com"}) == {"email": ["The email has already been taken."]}
    assert unique.errors({"email": "free@example.com"}) == {}

    ignoring_self = Validator([Field("email", [Unique(models.User, ignore_id=user.id)])], db)
    assert ignoring_self.errors({"email": "taken@example.com"}) == {}

    exists = Validator([Field("category", [Exists(models.PostCategory)])], db)
    assert exists.errors({"category": category.id}) == {}
    assert exists.errors({"category": 999}) == {"category": ["The selected category is invalid."]}


def test_image_rule():
    schema = [Field("image", [Nullable(), Image()])]

    assert Validator(schema).errors({"image": upload("a.png", "image/png")}) == {}
    assert Validator(schema).errors({"image": upload("a.svg", "image/svg+xml")}) == {}
    assert Validator(schema).errors({"image": "a.png"}) == {"image": ["The image field must be an image."]}
    assert Validator(schema).errors({"image": upload("a.png", "text/html")}) == {
        "image": ["The image field must be a file of type: jpeg, png, jpg, gif, svg."]
    }
    assert Validator(schema).errors({"image": upload("a.gif", "image/gif", size=2048 * 1024 + 1)}) == {
        "image": ["The image field must not be greater than 2048 kilobytes."]
    }


def test_post_rules_title_uniqueness_only_on_update(db, user, make_post, make_category):
    category = make_category()
    post = make_post(user, title="Existing", categories=[category])
    other = make_post(user, title="Other", categories=[category])
    payload = {"title": "Existing", "content": "c", "post_categories": [category.id]}

    assert Validator(post_rules(), db).errors(payload) == {}
    assert Validator(post_rules(post.id), db).errors(payload) == {}
    assert Validator(post_rules(other.id), db).errors(payload) == {
        "title": ["The title has already been taken."]
    }

"""Main application module."""
import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import models
import responses
from auth import (authenticate, check_ownership, check_self, get_current_token,
                  get_current_user, issue_token, revoke_token)
from cache import (POST_INDEX_PREFIX, USER_INDEX_PREFIX, DatabaseCache,
                   get_cache, post_index_key, user_index_key)
from database import engine, get_db, transaction
from errors import (ApiError, AuthenticationError, AuthorizationError,
                    InternalError, internal_errors)
from logging_config import setup_logging
from media import MediaStore, get_media_store
from repositories import (BookmarkRepository, PostCategoryRepository,
                          PostRepository, UserRepository, serialize_post)
from validation import (Validator, login_rules, post_category_rules,
                        post_rules, registration_rules, user_update_rules)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)
    os.makedirs(config.MEDIA_ROOT, exist_ok=True)
    logger.info("Blog API started")
    yield
    logger.info("Blog API shutting down")


app = FastAPI(title="Blog API", lifespan=lifespan)
models.Base.metadata.create_all(bind=engine)

db_dependency = Annotated[Session, Depends(get_db)]
cache_dependency = Annotated[DatabaseCache, Depends(get_cache)]
media_dependency = Annotated[MediaStore, Depends(get_media_store)]
user_dependency = Annotated[models.User, Depends(get_current_user)]


async def read_payload(request: Request) -> dict:
    """Request body as a dict, from JSON or form/multipart data.

    Repeated form keys and keys ending in [] become lists.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ApiError("Malformed JSON body.", status_code=status.HTTP_400_BAD_REQUEST)
        return body if isinstance(body, dict) else {}
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        data = {}
        for key in form.keys():
            values = form.getlist(key)
            if key.endswith("[]"):
                data[key[:-2]] = list(values)
            elif len(values) > 1:
                data[key] = list(values)
            else:
                data[key] = values[0]
        return data
    return {}


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    """Render every ApiError as an error envelope"""
    if exc.status_code >= 500:
        logger.error(f"{exc.message} on {request.url.path}: {exc.errors}")
    else:
        logger.info(f"{exc.status_code} {exc.message} on {request.url.path}")
    return responses.error(exc.message, exc.status_code, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return responses.error(str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed path or query parameters, in the same field -> messages shape as body validation"""
    errors = {}
    for e in exc.errors():
        field = ".".join(str(loc) for loc in e["loc"][1:]) or str(e["loc"][0])
        errors.setdefault(field, []).append(e["msg"])
    return responses.error("Validation Error", 422, errors)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Anything not raised as an ApiError still ends in an error envelope"""
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return responses.error("Something went wrong.", status.HTTP_500_INTERNAL_SERVER_ERROR, {"error": str(exc)})


@app.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: Request, db: db_dependency, cache: cache_dependency,
                   media: media_dependency):
    """Create a user and issue their first bearer token in one transaction"""
    payload = await read_payload(request)
    data = Validator(registration_rules(), db).validate(payload, "Registration failed")

    try:
        with transaction(db):
            user = UserRepository(db, media).create(data["name"], data["email"], data["password"], commit=False)
            token = issue_token(db, user)
    except Exception as e:
        logger.error(f"Error during registration: {e}")
        raise InternalError(f"Error during registration: {e}", errors={"error": str(e)}) from e

    cache.delete_by_prefix(USER_INDEX_PREFIX)
    db.refresh(user)
    return responses.success({"token": token, "user": user.to_dict()}, "Registration successful!",
                             status.HTTP_201_CREATED)


@app.post("/login")
async def login(request: Request, db: db_dependency):
    """Authenticate a user using email and password"""
    payload = await read_payload(request)
    data = Validator(login_rules(), db).validate(payload, "Login failed")

    user = authenticate(db, data["email"], data["password"])
    if user is None:
        raise AuthenticationError("Invalid credentials.")
    if not user.has_verified_email():
        raise AuthorizationError("Account not verified.")

    with internal_errors("Login failed."):
        token = issue_token(db, user)
        db.commit()
    db.refresh(user)
    return responses.success({"token": token, "user": user.to_dict()}, "Login successful!")


@app.post("/logout")
async def logout(db: db_dependency,
                 token: models.PersonalAccessToken = Depends(get_current_token)):
    """Revoke the token used for this request"""
    revoke_token(db, token)
    return responses.success(None, "Logged out successfully.")


@app.get("/posts")
async def list_posts(db: db_dependency, cache: cache_dependency, media: media_dependency,
                     current_user: user_dependency, search: Optional[str] = None,
                     page: int = 1, per_page: int = config.DEFAULT_PER_PAGE):
    """Paginated posts, optionally filtered by title or content"""
    with internal_errors("Failed to retrieve posts."):
        data = cache.remember(
            post_index_key(search, page, per_page),
            config.POST_CACHE_TTL,
            lambda: PostRepository(db, media).paginate(search, page, per_page),
        )
    return responses.success(data, "Posts retrieved successfully.")


@app.post("/posts", status_code=status.HTTP_201_CREATED)
async def create_post(request: Request, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    """Create a post for the current user with its categories and optional image"""
    payload = await read_payload(request)
    data = Validator(post_rules(), db).validate(payload, "Validation failed.")

    with internal_errors("Failed to create post."):
        post = PostRepository(db, media).create(
            current_user, data["title"], data["content"], data["post_categories"], data.get("image"),
        )
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    return responses.success(serialize_post(post), "Post created successfully.", status.HTTP_201_CREATED)


@app.get("/posts/{slug}")
async def read_post(slug: str, db: db_dependency, media: media_dependency,
                    current_user: user_dependency):
    """Retrieve a single post by its slug"""
    with internal_errors("Failed to retrieve post."):
        post = PostRepository(db, media).get_by_slug(slug)
    return responses.success(serialize_post(post), "Post retrieved successfully")


@app.post("/posts/{post_id}/update", status_code=status.HTTP_201_CREATED)
async def update_post(post_id: int, request: Request, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    """Update a post by ID. POST so that an image can be sent as multipart; only the author may update"""
    posts = PostRepository(db, media)
    post = posts.get(post_id)
    check_ownership(current_user, post.user_id)

    payload = await read_payload(request)
    data = Validator(post_rules(post_id), db).validate(payload, "Validation failed.")

    with internal_errors("Failed to update post."):
        post = posts.update(post, data["title"], data["content"], data.get("post_categories"), data.get("image"))
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    return responses.success(serialize_post(post), "Post updated successfully.", status.HTTP_201_CREATED)


@app.delete("/posts/{post_id}", status_code=status.HTTP_201_CREATED)
async def delete_post(post_id: int, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    """Delete a post by ID with its image and category links. Only the author may delete"""
    posts = PostRepository(db, media)
    post = posts.get(post_id)
    check_ownership(current_user, post.user_id)

    with internal_errors("Failed to delete post."):
        posts.delete(post)
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    return responses.success([], "Post deleted successfully.", status.HTTP_201_CREATED)


@app.get("/post-categories")
async def list_post_categories(db: db_dependency, current_user: user_dependency,
                               search: Optional[str] = None, page: int = 1,
                               per_page: int = config.DEFAULT_PER_PAGE):
    data = PostCategoryRepository(db).paginate(search, page, per_page)
    return responses.success(data, "Post categories retrieved successfully.")


@app.post("/post-categories", status_code=status.HTTP_201_CREATED)
async def create_post_category(request: Request, db: db_dependency, current_user: user_dependency):
    payload = await read_payload(request)
    data = Validator(post_category_rules(), db).validate(payload, "Validation failed.",
                                                         status.HTTP_400_BAD_REQUEST)

    with internal_errors("Something went wrong. Try again later."):
        category = PostCategoryRepository(db).create(data["name"])
    return responses.success(category.to_dict(), "Post category created successfully.", status.HTTP_201_CREATED)


@app.get("/post-categories/{category_id}")
async def read_post_category(category_id: int, db: db_dependency, current_user: user_dependency):
    category = PostCategoryRepository(db).get(category_id)
    return responses.success(category.to_dict(), "Post category retrieved successfully.")


@app.put("/post-categories/{category_id}")
async def update_post_category(category_id: int, request: Request, db: db_dependency,
                               cache: cache_dependency, current_user: user_dependency):
    """Rename a category; cached post pages embed category names, so they are dropped"""
    categories = PostCategoryRepository(db)
    category = categories.get(category_id)
    payload = await read_payload(request)
    data = Validator(post_category_rules(), db).validate(payload)

    with internal_errors("Something went wrong. Try again later."):
        category = categories.update(category, data["name"])
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    return responses.success(category.to_dict(), "Post category updated successfully.")


@app.delete("/post-categories/{category_id}")
async def delete_post_category(category_id: int, db: db_dependency, current_user: user_dependency):
    """Delete a category; refused while any post still uses it"""
    categories = PostCategoryRepository(db)
    category = categories.get(category_id)
    with internal_errors("Something went wrong. Try again later."):
        categories.delete(category)
    return responses.success(None, "Post category deleted successfully.")


@app.get("/users")
async def list_users(db: db_dependency, cache: cache_dependency, media: media_dependency,
                     current_user: user_dependency, search: Optional[str] = None,
                     page: int = 1, per_page: int = config.DEFAULT_PER_PAGE):
    """Paginated users with their bookmarks, filtered by name or email"""
    with internal_errors("Failed to retrieve users."):
        data = cache.remember(
            user_index_key(page, per_page, search),
            config.USER_CACHE_TTL,
            lambda: UserRepository(db, media).paginate(search, page, per_page),
        )
    return responses.success(data, "Users retrieved successfully")


@app.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(request: Request, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    payload = await read_payload(request)
    data = Validator(registration_rules(), db).validate(payload)

    with internal_errors("Failed to create user."):
        user = UserRepository(db, media).create(data["name"], data["email"], data["password"])
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    return responses.success(user.to_dict(), "User created successfully", status.HTTP_201_CREATED)


@app.get("/users/{user_id}")
async def read_user(user_id: int, db: db_dependency, media: media_dependency,
                    current_user: user_dependency):
    user = UserRepository(db, media).get(user_id)
    return responses.success(UserRepository.serialize(user), "User retrieved successfully")


@app.put("/users/{user_id}")
async def update_user(user_id: int, request: Request, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    """Update name and email; users may only update themselves"""
    users = UserRepository(db, media)
    user = users.get(user_id)
    check_self(current_user, user.id)

    payload = await read_payload(request)
    data = Validator(user_update_rules(user.id), db).validate(payload)

    with internal_errors("Failed to update user."):
        user = users.update(user, data["name"], data["email"])
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    return responses.success(user.to_dict(), "User updated successfully")


@app.delete("/users/{user_id}")
async def delete_user(user_id: int, db: db_dependency, cache: cache_dependency,
                      media: media_dependency, current_user: user_dependency):
    """Delete a user and everything they own; users may only delete themselves"""
    users = UserRepository(db, media)
    user = users.get(user_id)
    check_self(current_user, user.id)

    with internal_errors("Failed to delete user."):
        users.delete(user)
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    cache.delete_by_prefix(POST_INDEX_PREFIX)
    return responses.success(None, "User deleted successfully")


@app.get("/bookmarks")
async def list_bookmarks(db: db_dependency, current_user: user_dependency):
    return responses.success(BookmarkRepository(db).list(current_user), "Bookmarks retrieved successfully")


@app.post("/bookmarks/{post_id}")
async def toggle_bookmark(post_id: int, db: db_dependency, cache: cache_dependency,
                          current_user: user_dependency):
    """Bookmark the post, or remove the bookmark if it already exists"""
    bookmarks = BookmarkRepository(db)
    with internal_errors("Failed to toggle bookmark"):
        bookmarked = bookmarks.toggle(current_user, post_id)
    cache.delete_by_prefix(USER_INDEX_PREFIX)
    message = "Post bookmarked" if bookmarked else "Bookmark removed"
    return responses.success(bookmarks.list(current_user), message)


# Uploaded post images; mounted after the API routes
app.mount(config.MEDIA_URL, StaticFiles(directory=config.MEDIA_ROOT, check_dir=False), name="media")

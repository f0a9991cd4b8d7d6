import os
import logging

from fastapi.responses import JSONResponse
from fastapi import APIRouter, status, HTTPException, Request, Response, Depends
from postgrest.exceptions import APIError
from supabase import AuthApiError, Client

from barter.core.supabase_client import get_supabase, get_auth_client
from barter.core.dependencies import CurrentUser, get_current_user
from barter.utils.env_helper import env_bool, env_none_or_str
from .schemas import (
    UserRegistrationModel,
    UserRegistrationResponseModel,
    UserLoginModel,
    UserLoginResponseModel,
    AccessTokenResponseModel,
    MeResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/auth/access"
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=env_bool("HTTPONLY", default=True),
        secure=env_bool("SECURE", default=False),
        samesite=os.getenv("SAMESITE", "Lax"),
        domain=env_none_or_str("COOKIE_DOMAIN", None),
        max_age=REFRESH_COOKIE_MAX_AGE,
        path=REFRESH_COOKIE_PATH,
    )


def _delete_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,  # must match set_cookie()
        domain=env_none_or_str("COOKIE_DOMAIN", None),
    )


@router.post("/register", response_model=UserRegistrationResponseModel, status_code=201)
def register_user(
    data: UserRegistrationModel,
    auth_client: Client = Depends(get_auth_client),
    client: Client = Depends(get_supabase),
):
    """
    Register a new user.

    Creates the Supabase Auth user and the matching `profiles` row holding
    the display name shown to trading partners.

    **Input Fields**
    - **email**: A valid email, not already registered.
    - **full_name**: 1–80 characters.
    - **password**: Minimum 8 characters with lower and upper case letters,
      a number and a special character.

    **Returns**
    - User ID, email, full name

    **Errors**
    - 400: Invalid input or failed to create user
    - 409: Email already registered
    - 500: Unexpected Supabase or server error
    """
    try:
        res = auth_client.auth.sign_up(
            {
                "email": data.email,
                "password": data.password.get_secret_value(),
            }
        )
    except AuthApiError as error:
        logger.error(f"supabase_error={error}")
        raise HTTPException(status_code=409, detail=str(error))

    if not res.user:
        raise HTTPException(status_code=400, detail="Failed to create user")

    user_id = res.user.id

    try:
        client.table("profiles").insert(
            {
                "id": user_id,
                "full_name": data.full_name,
                "email": data.email,
            }
        ).execute()
    except APIError as error:
        # The auth user exists; PATCH /profiles/me with a full_name creates the row
        logger.error(f"profile_insert_failed user_id={user_id} error={error}")
        raise HTTPException(status_code=500, detail="Failed to create user profile")

    logger.info(f"user_register_success email={data.email}")

    return {
        "id": user_id,
        "email": res.user.email,
        "full_name": data.full_name,
    }


@router.post("/login", response_model=UserLoginResponseModel, status_code=200)
def login_user(
    user_data: UserLoginModel,
    response: Response,
    client: Client = Depends(get_auth_client),
):
    """
    Authenticate a user with email and password.

    Returns a short-lived access token; the refresh token is set in an
    HttpOnly cookie scoped to `/auth/access`.

    **Errors**
    - 401: Invalid email or password
    - 500: Supabase or internal server error
    """
    try:
        res = client.auth.sign_in_with_password(
            {
                "email": user_data.email,
                "password": user_data.password.get_secret_value(),
            }
        )
    except AuthApiError as error:
        raise HTTPException(status_code=401, detail=error.message)
    except Exception:
        logger.exception(f"user_login_failed email={user_data.email}")
        raise HTTPException(
            status_code=500, detail="An internal server error occurred during login."
        )

    if not res.session:
        raise HTTPException(
            status_code=500,
            detail="Supabase authentication returned an unexpected response.",
        )

    _set_refresh_cookie(response, res.session.refresh_token)
    logger.info(f"user_login_success email={user_data.email}")

    return {
        "access_token": res.session.access_token,
        "expires_in": res.session.expires_in,
        "user_id": res.user.id,
        "email": res.user.email,
    }


@router.get("/access", response_model=AccessTokenResponseModel, status_code=200)
def get_new_access(
    request: Request,
    response: Response,
    client: Client = Depends(get_auth_client),
):
    """
    Issue a new access token using the refresh token cookie.

    If rotation is enabled, the cookie is updated with the new refresh token.

    **Errors**
    - 401: Missing, expired, revoked, or invalid refresh token
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE)

    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token provided.",
        )

    try:
        refreshed = client.auth.refresh_session(refresh_token)
        session = refreshed.session
        if session is None:
            raise ValueError("no session returned")

    except Exception as e:
        logger.info(f"refresh_rejected error={e}")
        failed = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Refresh token invalid or expired. Please log in again."},
        )
        _delete_refresh_cookie(failed)
        return failed

    _set_refresh_cookie(response, session.refresh_token)
    return {"access_token": session.access_token}


@router.get("/me", response_model=MeResponseModel, status_code=200)
def get_me(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Authenticated user's auth info and profile.

    **Errors**
    - 401: Invalid or expired token
    - 500: Database or server error
    """
    try:
        profile_query = (
            client.table("profiles")
            .select("full_name, avatar_url, created_at")
            .eq("id", user.id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception(f"me_lookup_failed user_id={user.id}")
        raise HTTPException(500, detail="Internal server error")

    return {
        "auth": {"id": user.id, "email": user.email},
        "profile": profile_query.data[0] if profile_query.data else None,
    }


@router.post("/logout")
def logout(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Revoke the user's refresh tokens and clear the cookie. Supabase cannot
    invalidate issued JWTs early, so the access token stays valid until it
    expires.
    """
    try:
        client.auth.admin.sign_out(user.access_token)
    except AuthApiError as error:
        logger.warning(f"sign_out_failed user_id={user.id} error={error}")

    response = JSONResponse({"logged_out": True})
    _delete_refresh_cookie(response)

    return response

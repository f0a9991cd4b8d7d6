import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from supabase import Client

from barter.core.supabase_client import get_supabase
from barter.core.dependencies import CurrentUser, get_current_user
from barter.utils.storage import IMAGE_EXTENSIONS, upload_image

from .schemas import ProfileModel, UpdateProfileModel


logger = logging.getLogger(__name__)
router = APIRouter()

PROFILE_FIELDS = "id, full_name, avatar_url, created_at"


def _fetch_profile(client: Client, user_id: str) -> dict:
    response = (
        client.table("profiles")
        .select(PROFILE_FIELDS)
        .eq("id", str(user_id))
        .limit(1)
        .execute()
    )

    if not response.data:
        raise HTTPException(status_code=404, detail="Profile not found.")

    return response.data[0]


def _update_profile(
    client: Client, user_id: str, changes: dict, email: str = None
) -> dict:
    response = (
        client.table("profiles")
        .update(changes)
        .eq("id", str(user_id))
        .execute()
    )

    if not response.data and changes.get("full_name"):
        # Registration can leave the auth user without a profile row
        response = (
            client.table("profiles")
            .insert({"id": str(user_id), "email": email, **changes})
            .execute()
        )
        logger.info(f"profile_created user_id={user_id}")

    if not response.data:
        raise HTTPException(status_code=404, detail="Profile not found.")

    logger.info(f"profile_updated user_id={user_id} fields={sorted(changes)}")
    return response.data[0]


@router.get("/me", response_model=ProfileModel, status_code=200)
def get_my_profile(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """The caller's profile."""
    try:
        return _fetch_profile(client, user.id)
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"profile_fetch_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Could not load profile data.")


@router.patch("/me", response_model=ProfileModel, status_code=200)
def update_my_profile(
    data: UpdateProfileModel,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Update the caller's display name and/or avatar URL. Only the fields sent
    are changed. A caller without a profile row gets one, provided
    `full_name` is sent.

    **Errors**
    - 400: Nothing to update
    - 404: Profile not found and no `full_name` to create it with
    - 500: Database error
    """
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update.")

    try:
        return _update_profile(client, user.id, changes, email=user.email)
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"profile_update_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Failed to save changes")


@router.post("/me/avatar", response_model=ProfileModel, status_code=200)
async def upload_avatar(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Upload a new profile picture and point the profile at it.

    **Errors**
    - 415: Not a JPEG, PNG or WebP image
    - 500: Storage or database error
    """
    if file.content_type not in IMAGE_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported image type.")

    data = await file.read()

    try:
        avatar_url = await run_in_threadpool(
            upload_image, client, data, file.content_type, folder="avatars"
        )
        return await run_in_threadpool(
            _update_profile, client, user.id, {"avatar_url": avatar_url}
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"avatar_upload_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Failed to update profile picture")


@router.get("/{user_id}", response_model=ProfileModel, status_code=200)
def get_profile(
    user_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """Public profile of another user (e.g. a seller)."""
    try:
        return _fetch_profile(client, str(user_id))
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"profile_fetch_failed user_id={user_id}")
        raise HTTPException(status_code=500, detail="Could not load profile data.")

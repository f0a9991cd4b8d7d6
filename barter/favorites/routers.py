import logging

from fastapi import APIRouter, HTTPException, Depends
from postgrest.exceptions import APIError
from supabase import Client

from barter.core.supabase_client import UNIQUE_VIOLATION, get_supabase
from barter.core.dependencies import CurrentUser, get_current_user

from .schemas import (
    FavoritesResponseModel,
    FavoriteStatusModel,
    RemoveFavoriteResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()

FAVORITES_SELECT = """
    id,
    product_id,
    created_at,
    products (
        id,
        name,
        price,
        image_url,
        rating,
        description,
        user_id,
        profiles (
            full_name,
            email
        )
    )
"""


def _find_favorite(client: Client, user_id: str, product_id: int):
    response = (
        client.table("favorites")
        .select("id")
        .eq("user_id", user_id)
        .eq("product_id", product_id)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def _favorite_item(row: dict) -> dict:
    product = dict(row["products"])
    product["seller"] = product.pop("profiles", None)
    return {
        "id": row["id"],
        "product_id": row["product_id"],
        "created_at": row.get("created_at"),
        "product": product,
    }


@router.get("", response_model=FavoritesResponseModel, status_code=200)
def list_favorites(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    The caller's saved listings, newest first, each with its product and
    seller. Favorites whose product has been deleted are left out.
    """
    try:
        response = (
            client.table("favorites")
            .select(FAVORITES_SELECT)
            .eq("user_id", user.id)
            .order("created_at", desc=True)
            .execute()
        )
    except Exception:
        logger.exception(f"favorites_fetch_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Failed to fetch favorites")

    return {
        "favorites": [
            _favorite_item(row) for row in response.data or [] if row.get("products")
        ]
    }


@router.get("/{product_id}", response_model=FavoriteStatusModel, status_code=200)
def get_favorite_status(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """Whether the caller has saved this listing."""
    try:
        favorite = _find_favorite(client, user.id, product_id)
    except Exception:
        logger.exception(f"favorite_check_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Failed to check favorite")

    return {
        "is_favorite": favorite is not None,
        "favorite_id": favorite["id"] if favorite else None,
    }


@router.post("/{product_id}/toggle", response_model=FavoriteStatusModel, status_code=200)
def toggle_favorite(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Save the listing if it is not saved yet, otherwise remove it.

    **Returns**
    - The new status: `is_favorite`, `favorite_id`

    **Errors**
    - 500: Unable to update favorites
    """
    try:
        favorite = _find_favorite(client, user.id, product_id)

        if favorite:
            client.table("favorites").delete().eq("id", favorite["id"]).execute()
            logger.info(f"favorite_removed user_id={user.id} product_id={product_id}")
            return {"is_favorite": False, "favorite_id": None}

        try:
            created = (
                client.table("favorites")
                .insert({"user_id": user.id, "product_id": product_id})
                .execute()
            )
            favorite = created.data[0]
        except APIError as e:
            # A concurrent toggle saved it first
            if e.code != UNIQUE_VIOLATION:
                raise
            favorite = _find_favorite(client, user.id, product_id)

        logger.info(f"favorite_added user_id={user.id} product_id={product_id}")
        return {"is_favorite": True, "favorite_id": favorite["id"] if favorite else None}

    except Exception:
        logger.exception(f"favorite_toggle_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Unable to update favorites")


@router.delete(
    "/entry/{favorite_id}", response_model=RemoveFavoriteResponseModel, status_code=200
)
def remove_favorite(
    favorite_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Remove one saved listing by favorite id.

    **Errors**
    - 404: No such favorite for the caller
    """
    try:
        response = (
            client.table("favorites")
            .delete()
            .eq("id", favorite_id)
            .eq("user_id", user.id)
            .execute()
        )
    except Exception:
        logger.exception(f"favorite_remove_failed favorite_id={favorite_id}")
        raise HTTPException(status_code=500, detail="Failed to remove favorite")

    if not response.data:
        raise HTTPException(status_code=404, detail="Favorite not found")

    return {"favorite_removed": True}

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, File, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from supabase import Client

from barter.core.supabase_client import get_supabase
from barter.core.dependencies import CurrentUser, get_current_user
from barter.chat.service import chat_path, get_or_create_conversation
from barter.chat.schemas import CreateDirectConversationResponseModel
from barter.utils.profiles import get_profile
from barter.utils.storage import IMAGE_EXTENSIONS, upload_image

from .service import filter_products
from .schemas import (
    SortOrder,
    CategoryModel,
    ProductModel,
    ProductDetailModel,
    ProductListResponseModel,
    CreateProductModel,
    UpdateProductModel,
    DeleteProductResponseModel,
    ImageUploadResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()

PRODUCT_FIELDS = (
    "id, name, description, price, category_id, user_id, image_url, rating, created_at"
)


def _fetch_product(client: Client, product_id: int) -> dict:
    response = (
        client.table("products")
        .select(PRODUCT_FIELDS)
        .eq("id", product_id)
        .limit(1)
        .execute()
    )

    if not response.data:
        raise HTTPException(status_code=404, detail="Product not found")

    return response.data[0]


def _fetch_own_product(client: Client, product_id: int, user_id: str) -> dict:
    product = _fetch_product(client, product_id)

    if str(product["user_id"]) != str(user_id):
        raise HTTPException(status_code=403, detail="This is not your product listing.")

    return product


@router.get("/categories", response_model=List[CategoryModel], status_code=200)
def list_categories(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """All categories, alphabetically."""
    try:
        response = client.table("categories").select("id, name").order("name").execute()
        return response.data or []
    except Exception:
        logger.exception("categories_fetch_failed")
        raise HTTPException(status_code=500, detail="Failed to fetch categories")


@router.get("", response_model=ProductListResponseModel, status_code=200)
def list_products(
    q: Optional[str] = Query(None, max_length=100),
    category: List[int] = Query([]),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: SortOrder = "newest",
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Browse listings.

    **Query**
    - `q`: matches name or description, case-insensitive
    - `category`: repeatable; a product matches any selected category
    - `min_price` / `max_price`: inclusive bounds
    - `sort`: `newest` (default), `price_asc`, `price_desc`

    **Errors**
    - 400: `min_price` above `max_price`
    - 500: Database error
    """
    if min_price is not None and max_price is not None and min_price > max_price:
        raise HTTPException(status_code=400, detail="min_price is above max_price.")

    try:
        response = (
            client.table("products")
            .select(PRODUCT_FIELDS)
            .order("created_at", desc=True)
            .execute()
        )
    except Exception:
        logger.exception("products_fetch_failed")
        raise HTTPException(status_code=500, detail="Failed to fetch products")

    return {
        "products": filter_products(
            response.data or [],
            query=q,
            category_ids=category,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
        )
    }


@router.get("/mine", response_model=ProductListResponseModel, status_code=200)
def list_my_products(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """Listings posted by the caller, newest first."""
    try:
        response = (
            client.table("products")
            .select(PRODUCT_FIELDS)
            .eq("user_id", user.id)
            .order("created_at", desc=True)
            .execute()
        )
        return {"products": response.data or []}
    except Exception:
        logger.exception(f"my_products_fetch_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Could not load your products")


@router.post("/images", response_model=ImageUploadResponseModel, status_code=201)
async def upload_product_image(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Upload a listing photo to storage and return its public URL, to be sent
    as `image_url` when creating or editing a product.

    **Errors**
    - 400: Empty file
    - 415: Not a JPEG, PNG or WebP image
    - 500: Storage error
    """
    if file.content_type not in IMAGE_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported image type.")

    data = await file.read()

    try:
        image_url = await run_in_threadpool(
            upload_image, client, data, file.content_type, folder="products"
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"product_image_upload_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Failed to upload image")

    return {"image_url": image_url}


@router.post("", response_model=ProductModel, status_code=201)
def create_product(
    data: CreateProductModel,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Post a new listing owned by the caller.

    **Input**
    - `name`, `price` (> 0), `category_id`, `rating` (1–5), `image_url`
      are required; `description` is optional.

    **Errors**
    - 422: Invalid input
    - 500: Database error
    """
    try:
        response = (
            client.table("products")
            .insert({**data.model_dump(), "user_id": user.id})
            .execute()
        )
    except Exception:
        logger.exception(f"product_create_failed user_id={user.id}")
        raise HTTPException(
            status_code=500, detail="Failed to add product. Please try again."
        )

    product = response.data[0]
    logger.info(f"product_created product_id={product['id']} user_id={user.id}")
    return product


@router.get("/{product_id}", response_model=ProductDetailModel, status_code=200)
def get_product(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """One listing with its seller's name."""
    try:
        product = _fetch_product(client, product_id)
        seller = get_profile(client, product["user_id"])
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"product_fetch_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Failed to fetch product details")

    return {**product, "seller": seller}


@router.patch("/{product_id}", response_model=ProductModel, status_code=200)
def update_product(
    product_id: int,
    data: UpdateProductModel,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Edit one of the caller's listings. Only the fields sent are changed.

    **Errors**
    - 400: Nothing to update
    - 403: Listing belongs to someone else
    - 404: Product not found
    """
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update.")

    try:
        _fetch_own_product(client, product_id, user.id)
        response = (
            client.table("products")
            .update(changes)
            .eq("id", product_id)
            .execute()
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"product_update_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Failed to update product")

    logger.info(f"product_updated product_id={product_id} fields={sorted(changes)}")
    return response.data[0]


@router.delete("/{product_id}", response_model=DeleteProductResponseModel, status_code=200)
def delete_product(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Delete one of the caller's listings. Favorites pointing at it are left
    in place and skipped when favorites are listed.

    **Errors**
    - 403: Listing belongs to someone else
    - 404: Product not found
    """
    try:
        _fetch_own_product(client, product_id, user.id)
        client.table("products").delete().eq("id", product_id).execute()
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"product_delete_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Failed to delete product")

    logger.info(f"product_deleted product_id={product_id}")
    return {"product_deleted": True}


@router.post(
    "/{product_id}/chat",
    response_model=CreateDirectConversationResponseModel,
    status_code=200,
)
def message_seller(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Open a chat with the seller of a listing.

    Finds the conversation between the caller and the seller, creating it on
    first contact, and returns where to open it.

    **Returns**
    - `conversation_id`, `is_new`, `path`

    **Errors**
    - 400: The listing is the caller's own
    - 404: Product not found
    - 500: Database error
    """
    try:
        product = _fetch_product(client, product_id)

        if str(product["user_id"]) == user.id:
            raise HTTPException(status_code=400, detail="This is your own product listing")

        conversation, is_new = get_or_create_conversation(
            client, user.id, str(product["user_id"])
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"chat_initiation_failed product_id={product_id}")
        raise HTTPException(status_code=500, detail="Unable to start chat conversation")

    return {
        "conversation_id": conversation["id"],
        "is_new": is_new,
        "path": chat_path(conversation["id"]),
    }

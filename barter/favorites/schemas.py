from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import List, Optional


class FavoriteSeller(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None


class FavoriteProduct(BaseModel):
    id: int
    name: str
    price: float
    image_url: Optional[str] = None
    rating: Optional[int] = None
    description: Optional[str] = None
    user_id: Optional[UUID] = None
    seller: Optional[FavoriteSeller] = None


class FavoriteItem(BaseModel):
    id: int
    product_id: int
    created_at: Optional[datetime] = None
    product: FavoriteProduct


class FavoritesResponseModel(BaseModel):
    favorites: List[FavoriteItem]


class FavoriteStatusModel(BaseModel):
    is_favorite: bool
    favorite_id: Optional[int] = None


class RemoveFavoriteResponseModel(BaseModel):
    favorite_removed: bool

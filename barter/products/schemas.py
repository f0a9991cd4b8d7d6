from pydantic import BaseModel, field_validator
from uuid import UUID
from datetime import datetime
from typing import List, Optional, Literal


SortOrder = Literal["newest", "price_asc", "price_desc"]


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValueError("Product name is required.")
    if len(name) > 120:
        raise ValueError("Product name must be at most 120 characters long.")
    return name


def _check_price(price: float) -> float:
    if price <= 0:
        raise ValueError("Please enter a valid price")
    return round(price, 2)


def _check_rating(rating: int) -> int:
    if not (1 <= rating <= 5):
        raise ValueError("Rating must be between 1 and 5.")
    return rating


# Categories
class CategoryModel(BaseModel):
    id: int
    name: str


# Products
class SellerModel(BaseModel):
    id: UUID
    full_name: Optional[str] = None


class ProductModel(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    category_id: Optional[int] = None
    user_id: UUID
    image_url: Optional[str] = None
    rating: Optional[int] = None
    created_at: datetime


class ProductDetailModel(ProductModel):
    seller: Optional[SellerModel] = None


class ProductListResponseModel(BaseModel):
    products: List[ProductModel]


class CreateProductModel(BaseModel):
    name: str
    description: str = ""
    price: float
    category_id: int
    rating: int
    image_url: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, name: str) -> str:
        return _clean_name(name)

    @field_validator("price")
    @classmethod
    def validate_price(cls, price: float) -> float:
        return _check_price(price)

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, rating: int) -> int:
        return _check_rating(rating)

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, image_url: str) -> str:
        if not image_url.strip():
            raise ValueError("Please add an image")
        return image_url.strip()


class UpdateProductModel(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category_id: Optional[int] = None
    rating: Optional[int] = None
    image_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, name: Optional[str]) -> Optional[str]:
        return None if name is None else _clean_name(name)

    @field_validator("price")
    @classmethod
    def validate_price(cls, price: Optional[float]) -> Optional[float]:
        return None if price is None else _check_price(price)

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, rating: Optional[int]) -> Optional[int]:
        return None if rating is None else _check_rating(rating)


class DeleteProductResponseModel(BaseModel):
    product_deleted: bool


class ImageUploadResponseModel(BaseModel):
    image_url: str

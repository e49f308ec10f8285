import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.middleware import get_current_profile, get_current_user, require_not_banned
from app.services.product_service import (
    ImageUpload,
    ListingValidationError,
    ProductService,
    serialize_product,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def get_product_service() -> ProductService:
    """Dependency to get product service instance"""
    return ProductService()


class UpdateProductRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    category: Optional[str] = None
    location: Optional[str] = None
    tags: Optional[list[str]] = None
    discount_price: Optional[Decimal] = None
    discount_start_date: Optional[datetime] = None
    discount_end_date: Optional[datetime] = None


class RemoveImagesRequest(BaseModel):
    urls: list[str]


async def _read_uploads(files: list[UploadFile]) -> list[ImageUpload]:
    return [
        ImageUpload(data=await f.read(), content_type=f.content_type, filename=f.filename)
        for f in files
    ]


def _validation_error(e: ListingValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"errors": e.errors}
    )


@router.get("")
async def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Browse active listings, newest first. `q` searches titles.
    Public endpoint - no authentication required.
    """
    logger.info(f"list_products: Entry - category: {category}, q: {q}")

    try:
        if q:
            products = product_service.search_products(db, q, category=category, limit=limit)
        else:
            products = product_service.list_products(db, category=category, limit=limit, offset=offset)
        logger.info(f"list_products: Success - {len(products)} products")
        return {"products": products}
    except Exception as e:
        logger.error(f"list_products: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    title: str = Form(...),
    description: str = Form(...),
    price: Decimal = Form(...),
    category: str = Form(...),
    location: Optional[str] = Form(None),
    images: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    profile=Depends(get_current_profile),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Create a listing with 1-5 photos. Needs a free product slot.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"create_product: Entry - user: {user_id}")

    try:
        uploads = await _read_uploads(images)
        product = product_service.create_product(
            db, user_id, title, description, price, category, uploads, location=location
        )
        logger.info(f"create_product: Success - product: {product.id}")
        return {"product": serialize_product(product)}
    except HTTPException:
        raise
    except ListingValidationError as e:
        logger.info(f"create_product: Invalid - {e}")
        raise _validation_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"create_product: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/mine")
async def list_my_products(
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    product_service: ProductService = Depends(get_product_service)
):
    """
    All listings of the caller, whatever their status.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"list_my_products: Entry - user: {user_id}")

    try:
        products = product_service.list_user_products(db, user_id)
        return {"products": products}
    except Exception as e:
        logger.error(f"list_my_products: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """Public endpoint - no authentication required."""
    try:
        return {"product": product_service.get_product(db, product_id)}
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"get_product: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.patch("/{product_id}")
async def update_product(
    product_id: str,
    request: UpdateProductRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Edit listing fields. Only the owner can edit.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"update_product: Entry - user: {user_id}, product: {product_id}")

    try:
        product = product_service.update_product(
            db, user_id, product_id, updates=request.model_dump(exclude_unset=True)
        )
        logger.info(f"update_product: Success - product: {product_id}")
        return {"product": serialize_product(product)}
    except HTTPException:
        raise
    except ListingValidationError as e:
        raise _validation_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"update_product: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("/{product_id}/images")
async def add_product_images(
    product_id: str,
    images: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Add photos to a listing (at most 8 in total).
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"add_product_images: Entry - product: {product_id}, files: {len(images)}")

    try:
        uploads = await _read_uploads(images)
        product = product_service.update_product(db, user_id, product_id, new_images=uploads)
        return {"product": serialize_product(product)}
    except HTTPException:
        raise
    except ListingValidationError as e:
        raise _validation_error(e)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"add_product_images: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.delete("/{product_id}/images")
async def remove_product_images(
    product_id: str,
    request: RemoveImagesRequest,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Remove photos from a listing by URL.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"remove_product_images: Entry - product: {product_id}, urls: {len(request.urls)}")

    try:
        product = product_service.update_product(db, user_id, product_id, remove_image_urls=request.urls)
        return {"product": serialize_product(product)}
    except HTTPException:
        raise
    except ListingValidationError as e:
        raise _validation_error(e)
    except Exception as e:
        logger.error(f"remove_product_images: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.post("/{product_id}/renew")
async def renew_product(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(require_not_banned),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Start a new listing period for a product.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"renew_product: Entry - product: {product_id}")

    try:
        product = product_service.renew_product(db, user_id, product_id)
        return {"product": serialize_product(product)}
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"renew_product: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    profile=Depends(get_current_profile),
    product_service: ProductService = Depends(get_product_service)
):
    """
    Delete a listing and its photos. Owners and admins only.
    Requires authentication.
    """
    user_id = current_user['uid']
    logger.info(f"delete_product: Entry - user: {user_id}, product: {product_id}")

    try:
        product_service.delete_product(db, user_id, product_id, is_admin=profile.role == 'admin')
        logger.info(f"delete_product: Success - product: {product_id}")
        return {"message": "Product deleted", "product_id": product_id}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"delete_product: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

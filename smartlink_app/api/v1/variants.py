from fastapi import APIRouter, Depends, HTTPException, status
from smartlink_app.dependencies import get_variant_service
from smartlink_app.schemas.variant import VariantCreate, VariantList, VariantResponse, VariantUpdate
from smartlink_app.services.errors import VariantWeightError
from smartlink_app.services.variant_service import VariantService

router = APIRouter(prefix="/urls/{short_code}/variants", tags=["variants"])


@router.get("/", response_model=VariantList)
async def list_variants(
    short_code: str,
    variant_service: VariantService = Depends(get_variant_service)
):
    """Variants with click-through rates, control group included"""
    variants = await variant_service.list_variants(short_code)
    if variants is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found")
    return variants


@router.post("/", response_model=VariantResponse, status_code=status.HTTP_201_CREATED)
async def create_variant(
    short_code: str,
    variant_data: VariantCreate,
    variant_service: VariantService = Depends(get_variant_service)
):
    """Add a variant. Enables A/B testing on the link."""
    try:
        variant = await variant_service.create_variant(short_code, variant_data)
    except VariantWeightError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if variant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found")
    return variant


@router.get("/{variant_id}", response_model=VariantResponse)
async def get_variant(
    short_code: str,
    variant_id: int,
    variant_service: VariantService = Depends(get_variant_service)
):
    variant = await variant_service.get_variant(short_code, variant_id)
    if variant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Variant not found")
    return variant


@router.patch("/{variant_id}", response_model=VariantResponse)
async def update_variant(
    short_code: str,
    variant_id: int,
    variant_data: VariantUpdate,
    variant_service: VariantService = Depends(get_variant_service)
):
    try:
        variant = await variant_service.update_variant(short_code, variant_id, variant_data)
    except VariantWeightError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if variant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Variant not found")
    return variant


@router.delete("/{variant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_variant(
    short_code: str,
    variant_id: int,
    variant_service: VariantService = Depends(get_variant_service)
):
    """Delete a variant. Deleting the last one ends the A/B test."""
    if not await variant_service.delete_variant(short_code, variant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Variant not found")

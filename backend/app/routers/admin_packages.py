"""Admin package catalogue API."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.models.package import PackageCreate
from app.models.user import Actor
from app.services.auth_service import get_admin_user
from app.services.package_service import create_package, is_slug_available, list_packages

router = APIRouter(prefix="/api/admin/packages", tags=["admin-packages"])


@router.get("")
async def get_packages(
    include_inactive: bool = Query(False),
    admin=Depends(get_admin_user),
):
    return {"packages": await list_packages(include_inactive=include_inactive)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def post_package(body: PackageCreate, admin=Depends(get_admin_user)):
    return {"package": await create_package(body, Actor.from_user(admin))}


@router.get("/check-slug")
async def check_slug(
    slug: str = Query(...),
    exclude: Optional[str] = Query(None),
    admin=Depends(get_admin_user),
):
    return {"available": await is_slug_available(slug, exclude_id=exclude), "slug": slug}

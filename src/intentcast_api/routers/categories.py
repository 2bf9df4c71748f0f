"""Observed categories."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..dependencies import ApiDependencies, get_deps

router = APIRouter(tags=["categories"])


@router.get("")
async def list_categories(deps: ApiDependencies = Depends(get_deps)) -> dict[str, Any]:
    categories = await deps.controller.list_categories()
    return {"count": len(categories), "categories": categories}

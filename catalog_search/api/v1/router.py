from fastapi import APIRouter
from catalog_search.api.v1 import catalog

router = APIRouter()
router.include_router(catalog.router, tags=["Catalog"])

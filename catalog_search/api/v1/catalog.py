from __future__ import annotations

from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from catalog_search.db.session import get_db
from catalog_search.models.lookups import Brand, LensClass, LensType, Material, Photochromic, Supplier, Treatment
from catalog_search.models.product import Product
from catalog_search.schemas.filters import FilterRequest
from catalog_search.services.query_executor import Page, StorageError, apply_filter_request

router = APIRouter()


def _serialize_lookup(row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def _serialize_supplier(row: Supplier) -> Dict[str, Any]:
    payload = _serialize_lookup(row)
    payload["nit"] = row.nit
    payload["city"] = row.city
    return payload


def _lookup_ref(row) -> Dict[str, Any] | None:
    if row is None:
        return None
    return {"id": row.id, "name": row.name}


def _serialize_product(row: Product) -> Dict[str, Any]:
    return {
        "id": row.id,
        "internal_code": row.internal_code,
        "name": row.name,
        "description": row.description,
        "status": row.status,
        "price": float(row.price) if row.price is not None else None,
        "stock": row.stock,
        "brand_id": row.brand_id,
        "material_id": row.material_id,
        "lens_class_id": row.lens_class_id,
        "treatment_id": row.treatment_id,
        "photochromic_id": row.photochromic_id,
        "supplier_id": row.supplier_id,
        "type_id": row.type_id,
        "brand": _lookup_ref(row.brand),
        "supplier": _lookup_ref(row.supplier),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def _page_payload(page: Page, serialize: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "data": [serialize(row) for row in page.items],
        "current_page": page.page,
        "per_page": page.per_page,
        "total": page.total,
        "last_page": page.last_page,
        "from": page.first_item,
        "to": page.last_item,
    }


def _raw_query_params(request: Request) -> Dict[str, Any]:
    params = request.query_params
    return {key: params.getlist(key) for key in params.keys()}


def _list_resource(request: Request, db: Session, model, serialize) -> Dict[str, Any]:
    filter_request = FilterRequest.from_query_params(_raw_query_params(request))
    try:
        page = apply_filter_request(db.query(model), model, filter_request)
    except StorageError:
        raise HTTPException(status_code=503, detail="Catalog storage is unavailable")
    return _page_payload(page, serialize)


RESOURCES = {
    "brands": (Brand, _serialize_lookup),
    "materials": (Material, _serialize_lookup),
    "lens-classes": (LensClass, _serialize_lookup),
    "treatments": (Treatment, _serialize_lookup),
    "photochromics": (Photochromic, _serialize_lookup),
    "lens-types": (LensType, _serialize_lookup),
    "suppliers": (Supplier, _serialize_supplier),
    "products": (Product, _serialize_product),
}


def _register(path: str, model, serialize) -> None:
    def list_rows(request: Request, db: Session = Depends(get_db)):
        return _list_resource(request, db, model, serialize)

    list_rows.__name__ = f"list_{path.replace('-', '_')}"
    router.add_api_route(f"/{path}", list_rows, methods=["GET"], name=list_rows.__name__)


for _path, (_model, _serialize) in RESOURCES.items():
    _register(_path, _model, _serialize)

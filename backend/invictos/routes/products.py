# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

"""
Catalog routes: products, categories and providers.

SECURITY: All routes require authentication.
- Read operations are open to every account (the register needs them)
- Write operations require the admin role
"""
from flask import Blueprint, request, jsonify

from ..services import catalog_service
from ..validation import ValidationError
from ..decorators import require_auth, require_admin

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")
providers_bp = Blueprint("providers", __name__, url_prefix="/api/providers")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products.

    Query params:
    - q: str (optional) - matches name or code, case-insensitive
    - category: str (optional) - exact category name
    """
    items = catalog_service.list_products(
        search=request.args.get("q"),
        category=request.args.get("category"),
    )
    return jsonify({"items": [p.to_dict() for p in items], "count": len(items)})


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    product = catalog_service.create_product(request.get_json(silent=True))
    return jsonify(product.to_dict()), 201


@products_bp.get("/<product_id>")
@require_auth
def get_product(product_id: str):
    return jsonify(catalog_service.get_product(product_id).to_dict())


@products_bp.patch("/<product_id>")
@require_auth
@require_admin
def update_product(product_id: str):
    product = catalog_service.update_product(product_id, request.get_json(silent=True))
    return jsonify(product.to_dict())


@products_bp.delete("/<product_id>")
@require_auth
@require_admin
def delete_product(product_id: str):
    catalog_service.delete_product(product_id)
    return jsonify({"deleted": True, "id": product_id})


@products_bp.post("/<product_id>/stock")
@require_auth
@require_admin
def adjust_stock(product_id: str):
    """Body: {"delta": int} - positive to restock, negative to correct."""
    data = request.get_json(silent=True) or {}
    if "delta" not in data:
        raise ValidationError("delta is required")
    product = catalog_service.adjust_stock(product_id, data["delta"])
    return jsonify(product.to_dict())


@categories_bp.get("")
@require_auth
def list_categories():
    return jsonify({"items": [c.to_dict() for c in catalog_service.list_categories()]})


@categories_bp.post("")
@require_auth
@require_admin
def create_category():
    return jsonify(catalog_service.create_category(request.get_json(silent=True)).to_dict()), 201


@categories_bp.patch("/<category_id>")
@require_auth
@require_admin
def update_category(category_id: str):
    return jsonify(catalog_service.update_category(category_id, request.get_json(silent=True)).to_dict())


@categories_bp.delete("/<category_id>")
@require_auth
@require_admin
def delete_category(category_id: str):
    catalog_service.delete_category(category_id)
    return jsonify({"deleted": True, "id": category_id})


@providers_bp.get("")
@require_auth
def list_providers():
    return jsonify({"items": [p.to_dict() for p in catalog_service.list_providers()]})


@providers_bp.post("")
@require_auth
@require_admin
def create_provider():
    return jsonify(catalog_service.create_provider(request.get_json(silent=True)).to_dict()), 201


@providers_bp.patch("/<provider_id>")
@require_auth
@require_admin
def update_provider(provider_id: str):
    return jsonify(catalog_service.update_provider(provider_id, request.get_json(silent=True)).to_dict())


@providers_bp.delete("/<provider_id>")
@require_auth
@require_admin
def delete_provider(provider_id: str):
    catalog_service.delete_provider(provider_id)
    return jsonify({"deleted": True, "id": provider_id})

"""
Catalog calls against the backend.
"""
import logging
from typing import List, Optional

from storefront.api_client import ApiClient
from storefront.exceptions import ApiError
from storefront.models import Product, ProductDraft, ProductPage, ProductQuery, ReviewDraft

logger = logging.getLogger(__name__)


class ProductService:
    """Product listing, detail, admin CRUD and reviews"""

    def __init__(self, api: ApiClient):
        self.api = api

    def list_products(self, query: Optional[ProductQuery] = None) -> ProductPage:
        query = query or ProductQuery()
        data = self.api.get("/products", params=query.to_params())
        if isinstance(data, list):
            return ProductPage(products=data, total=len(data))
        return ProductPage.model_validate(data or {})

    def get_product(self, product_id: str) -> Product:
        return Product.model_validate(self.api.get(f"/products/{product_id}"))

    def get_featured(self) -> List[Product]:
        return [Product.model_validate(p) for p in self.api.get("/products/featured") or []]

    def get_related(self, product_id: str, category: str) -> List[Product]:
        data = self.api.get(f"/products/{product_id}/related", params={"category": category})
        return [Product.model_validate(p) for p in data or []]

    def get_categories(self) -> List[str]:
        return [str(c) for c in self.api.get("/categories") or []]

    def create_product(self, draft: ProductDraft) -> Product:
        return Product.model_validate(self.api.post("/products", draft.to_wire()))

    def update_product(self, product_id: str, draft: ProductDraft) -> Product:
        return Product.model_validate(self.api.put(f"/products/{product_id}", draft.to_wire()))

    def delete_product(self, product_id: str) -> None:
        self.api.delete(f"/products/{product_id}")

    def create_review(self, product_id: str, review: ReviewDraft) -> str:
        data = self.api.post(f"/products/{product_id}/reviews", review.to_wire()) or {}
        return data.get("message", "Review added")

    def check_purchase(self, product_id: str) -> bool:
        """
        Whether the signed-in user has a paid order containing the product.

        Used only to decide whether to offer the review form, so any
        failure means "no".
        """
        try:
            data = self.api.get(f"/orders/check-purchase/{product_id}") or {}
        except ApiError as e:
            logger.info(f"Purchase check failed for {product_id}: {e.message}")
            return False
        return data.get("isPaid") is True

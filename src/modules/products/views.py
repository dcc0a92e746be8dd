"""Product API views.

Exposes the ``ProductService`` via HTTP using DRF ViewSets.
Domain errors propagate to ``api_exception_handler``, which renders
them in the standard error envelope.
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.mixins import ListModelMixin
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.products.dtos import StockAdjustmentDTO
from modules.products.filters import ProductFilter
from modules.products.ledger import StockLedger
from modules.products.models import Product
from modules.products.repositories.django_repository import ProductDjangoRepository
from modules.products.serializers import ProductSerializer, StockAdjustmentSerializer
from modules.products.services import ProductService


class ProductViewSet(ListModelMixin, GenericViewSet):
    """Read-only catalog plus the staff stock adjustment action.

    Uses ``ProductService`` with ``ProductDjangoRepository`` (DIP).
    """

    filterset_class = ProductFilter
    search_fields = ["name", "sku", "description"]
    ordering_fields = ["name", "price", "created_at"]
    ordering = ["name", "id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]
    pagination_class = StandardResultsSetPagination
    queryset = Product.objects.all()
    serializer_class = ProductSerializer

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = ProductService(
            repository=ProductDjangoRepository(),
            ledger=StockLedger(),
        )

    def get_permissions(self):
        if self.action in {"list", "retrieve"}:
            return [AllowAny()]
        return [IsAuthenticated()]

    def get_queryset(self):
        return self._service.list_products()

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/products/{pk}/"""
        product = self._service.get_product(pk)
        return Response(ProductSerializer(product).data)

    @action(detail=False, methods=["post"], url_path="stock/adjust")
    def adjust_stock(self, request: Request) -> Response:
        """POST /api/v1/products/stock/adjust/

        Body: ``{"adjustments": [{product_id, size, color, quantity_change}]}``.
        Each adjustment succeeds or fails on its own; the response lists
        the outcome of every request.
        """
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        adjustments = [
            StockAdjustmentDTO(**item)
            for item in serializer.validated_data["adjustments"]
        ]
        result = self._service.adjust_stock(request.user, adjustments)

        return Response(
            {
                "applied": result.applied_count,
                "failed": len(result.failed),
                "results": result.model_dump(mode="json")["results"],
            }
        )

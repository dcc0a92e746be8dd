import django_filters

from modules.products.models import Product


class ProductFilter(django_filters.FilterSet):
    name = django_filters.CharFilter(field_name="name", lookup_expr="icontains")
    sku = django_filters.CharFilter(field_name="sku", lookup_expr="iexact")
    min_price = django_filters.NumberFilter(field_name="price", lookup_expr="gte")
    max_price = django_filters.NumberFilter(field_name="price", lookup_expr="lte")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    size = django_filters.CharFilter(field_name="stock__size", distinct=True)
    color = django_filters.CharFilter(
        field_name="stock__color", lookup_expr="iexact", distinct=True
    )

    class Meta:
        model = Product
        fields = ["name", "sku", "min_price", "max_price", "status", "size", "color"]

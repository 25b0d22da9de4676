from rest_framework import serializers

from .models import Category, Order, OrderItem, Product, Variant


# ---- checkout ----

class CartItemIn(serializers.Serializer):
    id = serializers.UUIDField(source="product_id")
    cantidad = serializers.IntegerField(source="quantity", min_value=1)
    talla = serializers.CharField(source="size", required=False, allow_null=True, allow_blank=True)
    color = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class CustomerIn(serializers.Serializer):
    email = serializers.EmailField()
    name = serializers.CharField(max_length=150)
    phone = serializers.CharField(max_length=30, required=False, allow_blank=True, allow_null=True)


class ShippingAddressIn(serializers.Serializer):
    line1 = serializers.CharField(max_length=255)
    line2 = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=100, required=False, allow_blank=True)
    state = serializers.CharField(max_length=100, required=False, allow_blank=True)
    postal_code = serializers.CharField(max_length=20, required=False, allow_blank=True)
    # free text from the storefront form ("Colombia"); Stripe collects the ISO country itself
    country = serializers.CharField(max_length=100, required=False, allow_blank=True)


class CheckoutIn(serializers.Serializer):
    items = CartItemIn(many=True, allow_empty=True)
    customer = CustomerIn()
    shippingAddress = ShippingAddressIn(source="shipping_address")


# ---- catalog ----

class VariantIn(serializers.Serializer):
    talla = serializers.CharField(source="size", max_length=20)
    color = serializers.CharField(max_length=50)
    stock = serializers.IntegerField(min_value=0)
    precio = serializers.DecimalField(source="price", max_digits=12, decimal_places=2, min_value=0,
                                      required=False, allow_null=True)
    sku = serializers.CharField(max_length=60)


class VariantOut(serializers.ModelSerializer):
    talla = serializers.CharField(source="size")
    precio = serializers.DecimalField(source="unit_price", max_digits=12, decimal_places=2)

    class Meta:
        model = Variant
        fields = ["id", "talla", "color", "stock", "precio", "sku"]


class CategoryRef(serializers.ModelSerializer):
    nombre = serializers.CharField(source="name")

    class Meta:
        model = Category
        fields = ["id", "nombre", "slug"]


class CategoryOut(serializers.ModelSerializer):
    nombre = serializers.CharField(source="name")
    descripcion = serializers.CharField(source="description")
    imagen = serializers.CharField(source="image")
    orden = serializers.IntegerField(source="display_order")
    activo = serializers.BooleanField(source="is_active")
    totalProductos = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source="created_at")

    class Meta:
        model = Category
        fields = ["id", "nombre", "slug", "descripcion", "imagen", "orden", "activo", "totalProductos", "createdAt"]

    def get_totalProductos(self, obj):
        return getattr(obj, "product_count", None)


class CategoryIn(serializers.Serializer):
    nombre = serializers.CharField(source="name", min_length=2, max_length=100)
    slug = serializers.SlugField(max_length=120, required=False)
    descripcion = serializers.CharField(source="description", required=False, allow_blank=True)
    imagen = serializers.URLField(source="image", required=False, allow_blank=True)
    orden = serializers.IntegerField(source="display_order", min_value=0, default=0)
    activo = serializers.BooleanField(source="is_active", default=True)


class ProductOut(serializers.ModelSerializer):
    nombre = serializers.CharField(source="name")
    descripcionCorta = serializers.CharField(source="short_description")
    descripcionLarga = serializers.CharField(source="long_description")
    precio = serializers.DecimalField(source="price", max_digits=12, decimal_places=2)
    precioOriginal = serializers.DecimalField(source="original_price", max_digits=12, decimal_places=2)
    descuento = serializers.IntegerField(source="discount_percent")
    stockMinimo = serializers.IntegerField(source="min_stock")
    estadoStock = serializers.CharField(source="stock_status")
    imagenes = serializers.JSONField(source="images")
    colores = serializers.JSONField(source="colors")
    tallas = serializers.JSONField(source="sizes")
    destacado = serializers.BooleanField(source="is_featured")
    activo = serializers.BooleanField(source="is_active")
    categoriaId = serializers.UUIDField(source="category_id")
    categoria = CategoryRef(source="category")
    variantes = VariantOut(source="variants", many=True)
    createdAt = serializers.DateTimeField(source="created_at")

    class Meta:
        model = Product
        fields = [
            "id", "nombre", "slug", "descripcionCorta", "descripcionLarga", "precio", "precioOriginal",
            "descuento", "sku", "stock", "stockMinimo", "estadoStock", "imagenes", "colores", "tallas",
            "tags", "destacado", "activo", "categoriaId", "categoria", "variantes", "createdAt",
        ]


class ProductIn(serializers.Serializer):
    nombre = serializers.CharField(source="name", min_length=3, max_length=200)
    descripcionCorta = serializers.CharField(source="short_description", min_length=10, max_length=500)
    descripcionLarga = serializers.CharField(source="long_description", required=False, allow_blank=True)
    precio = serializers.DecimalField(source="price", max_digits=12, decimal_places=2, min_value=0)
    precioOriginal = serializers.DecimalField(source="original_price", max_digits=12, decimal_places=2,
                                              min_value=0, required=False, allow_null=True)
    categoriaId = serializers.PrimaryKeyRelatedField(source="category", queryset=Category.objects.all())
    sku = serializers.CharField(min_length=3, max_length=50)
    stock = serializers.IntegerField(min_value=0)
    stockMinimo = serializers.IntegerField(source="min_stock", min_value=1, default=10)
    imagenes = serializers.ListField(source="images", child=serializers.URLField(), required=False)
    colores = serializers.ListField(source="colors", child=serializers.CharField(), required=False)
    tallas = serializers.ListField(source="sizes", child=serializers.CharField(), required=False)
    tags = serializers.ListField(child=serializers.CharField(), required=False)
    destacado = serializers.BooleanField(source="is_featured", default=False)
    activo = serializers.BooleanField(source="is_active", default=True)
    variantes = VariantIn(source="variants", many=True, required=False)

    def validate_variantes(self, variants):
        # partial updates relax nested fields too; variants are always replaced whole
        if any({"size", "color", "stock", "sku"} - set(v) for v in variants):
            raise serializers.ValidationError("Cada variante requiere talla, color, stock y sku.")
        combos = [(v["size"], v["color"]) for v in variants]
        if len(set(combos)) != len(combos):
            raise serializers.ValidationError("Talla/color repetidos en las variantes.")
        skus = [v["sku"] for v in variants]
        if len(set(skus)) != len(skus):
            raise serializers.ValidationError("SKU repetido en las variantes.")
        return variants


class ProductPatchIn(serializers.Serializer):
    activo = serializers.BooleanField(source="is_active", required=False)
    destacado = serializers.BooleanField(source="is_featured", required=False)
    stock = serializers.IntegerField(min_value=0, required=False)


class ProductQueryIn(serializers.Serializer):
    search = serializers.CharField(required=False, allow_blank=True)
    categoria = serializers.CharField(source="category", required=False, allow_blank=True)
    precioMin = serializers.DecimalField(source="min_price", max_digits=12, decimal_places=2, min_value=0,
                                         required=False)
    precioMax = serializers.DecimalField(source="max_price", max_digits=12, decimal_places=2, min_value=0,
                                         required=False)
    stock = serializers.ChoiceField(
        choices=["out", "low", "available", "agotado", "bajo", "disponible"], required=False
    )
    activo = serializers.BooleanField(source="active", required=False)
    destacado = serializers.BooleanField(source="featured", required=False)
    tallas = serializers.CharField(source="sizes", required=False, allow_blank=True)
    colores = serializers.CharField(source="colors", required=False, allow_blank=True)
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)

    def validate_tallas(self, value):
        return [s.strip() for s in value.split(",") if s.strip()]

    def validate_colores(self, value):
        return [s.strip() for s in value.split(",") if s.strip()]

    def validate(self, attrs):
        low, high = attrs.get("min_price"), attrs.get("max_price")
        if low is not None and high is not None and low > high:
            raise serializers.ValidationError("precioMin no puede ser mayor que precioMax.")
        return attrs


# ---- orders ----

class OrderItemOut(serializers.ModelSerializer):
    productoId = serializers.UUIDField(source="product_id")
    varianteId = serializers.UUIDField(source="variant_id")
    nombre = serializers.CharField(source="name")
    precio = serializers.DecimalField(source="unit_price", max_digits=12, decimal_places=2)
    cantidad = serializers.IntegerField(source="quantity")
    talla = serializers.CharField(source="size")

    class Meta:
        model = OrderItem
        fields = ["id", "productoId", "varianteId", "nombre", "precio", "cantidad", "talla", "color", "subtotal"]


class OrderOut(serializers.ModelSerializer):
    numeroPedido = serializers.CharField(source="number")
    clienteEmail = serializers.EmailField(source="customer_email")
    clienteNombre = serializers.CharField(source="customer_name")
    clienteTelefono = serializers.CharField(source="customer_phone")
    direccionEnvio = serializers.JSONField(source="shipping_address")
    envio = serializers.DecimalField(source="shipping", max_digits=12, decimal_places=2)
    metodoPago = serializers.CharField(source="payment_method")
    estadoPedido = serializers.CharField(source="status")
    estadoPago = serializers.CharField(source="payment_status")
    stripeSessionId = serializers.CharField(source="stripe_session_id")
    stripePaymentId = serializers.CharField(source="stripe_payment_id")
    trackingNumber = serializers.CharField(source="tracking_number")
    notas = serializers.CharField(source="notes")
    fechaEnvio = serializers.DateTimeField(source="shipped_at")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")
    items = OrderItemOut(many=True)

    class Meta:
        model = Order
        fields = [
            "id", "numeroPedido", "clienteEmail", "clienteNombre", "clienteTelefono", "direccionEnvio",
            "subtotal", "envio", "total", "metodoPago", "estadoPedido", "estadoPago", "stripeSessionId",
            "stripePaymentId", "trackingNumber", "notas", "fechaEnvio", "createdAt", "updatedAt", "items",
        ]


class OrderUpdateIn(serializers.Serializer):
    # statuses are checked by the service so they surface as InvalidStatusValue
    estadoPedido = serializers.CharField(source="status", required=False)
    estadoPago = serializers.CharField(source="payment_status", required=False)
    trackingNumber = serializers.CharField(source="tracking_number", required=False, allow_blank=True)
    notas = serializers.CharField(source="notes", required=False, allow_blank=True)
    fechaEnvio = serializers.DateTimeField(source="shipped_at", required=False)


class OrderQueryIn(serializers.Serializer):
    estado = serializers.ChoiceField(source="status", choices=Order.Status.values, required=False)
    fechaInicio = serializers.DateField(source="start", required=False)
    fechaFin = serializers.DateField(source="end", required=False)
    search = serializers.CharField(required=False, allow_blank=True)
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=20)


class LoginIn(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False)

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

DEFAULT_NO_STOCK_LIMIT_TEMPLATES = ("gastronomy",)


def template_enforces_stock(template: str | None) -> bool:
    """Stock policy implied by a display template (see NO_STOCK_LIMIT_TEMPLATES)."""
    no_limit = getattr(settings, "NO_STOCK_LIMIT_TEMPLATES", DEFAULT_NO_STOCK_LIMIT_TEMPLATES)
    return template not in no_limit


class TenantModel(models.Model):
    slug = models.SlugField(max_length=100, unique=True)
    name = models.CharField(max_length=200, blank=True, default="")
    # Auth user id of the owner, as issued by the identity provider
    owner_id = models.CharField(max_length=64, blank=True, default="")
    template = models.CharField(max_length=32, default="gallery")
    enforces_stock = models.BooleanField(null=True, blank=True)
    # iv:authTag:ciphertext (hex), see apps.orders.crypto
    mp_access_token = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "tenants"

    def save(self, *args, **kwargs):
        # Stock policy defaults from the template only when not set explicitly
        if self.enforces_stock is None:
            self.enforces_stock = template_enforces_stock(self.template)
        super().save(*args, **kwargs)

    def __str__(self):
        return self.slug


class ProductModel(models.Model):
    tenant = models.ForeignKey(TenantModel, on_delete=models.CASCADE, related_name="products")
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(max_digits=12, decimal_places=2)
    category = models.CharField(max_length=100, blank=True, default="")
    stock = models.IntegerField(null=True, blank=True)
    image_url = models.URLField(max_length=500, blank=True, default="")
    active = models.BooleanField(default=True)
    # {"sizes": [{"id": "m", "label": "M", "stock": 3}, ...]}
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"

    def __str__(self):
        return self.name


class CustomerModel(models.Model):
    tenant = models.ForeignKey(TenantModel, on_delete=models.CASCADE, related_name="customers")
    name = models.CharField(max_length=200)
    email = models.CharField(max_length=254)
    phone = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "customers"
        indexes = [models.Index(fields=["tenant", "email"], name="customers_tenant_email_idx")]


class OrderModel(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        PREPARING = "preparing"
        READY = "ready"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    tenant = models.ForeignKey(TenantModel, on_delete=models.PROTECT, related_name="orders")
    customer = models.ForeignKey(
        CustomerModel, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders"
    )
    items = models.JSONField(default=list, encoder=DjangoJSONEncoder)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    payment_method = models.CharField(max_length=32)
    payment_id = models.CharField(max_length=128, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at", "-id"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveIntegerField(default=0)
    response_body = models.JSONField(default=dict, encoder=DjangoJSONEncoder)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"

from django.urls import path

from . import views

urlpatterns = [
    path("health", views.health, name="health"),
    path("productos", views.product_list, name="product-list"),
    path("productos/<slug:slug>", views.product_detail, name="product-detail"),
    path("categorias", views.category_list, name="category-list"),
    path("pagos/crear-sesion", views.create_checkout_session, name="checkout"),
    path("webhooks/stripe", views.stripe_webhook, name="stripe-webhook"),
    path("auth/login", views.auth_login, name="auth-login"),
    path("auth/logout", views.auth_logout, name="auth-logout"),
    path("auth/me", views.auth_me, name="auth-me"),
    path("admin/productos", views.admin_products, name="admin-products"),
    path("admin/productos/<uuid:pk>", views.admin_product_detail, name="admin-product-detail"),
    path("admin/categorias", views.admin_categories, name="admin-categories"),
    path("admin/categorias/<uuid:pk>", views.admin_category_detail, name="admin-category-detail"),
    path("admin/pedidos", views.admin_orders, name="admin-orders"),
    path("admin/pedidos/<uuid:pk>", views.admin_order_detail, name="admin-order-detail"),
    path("admin/estadisticas", views.admin_statistics, name="admin-statistics"),
]

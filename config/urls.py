from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("freight.urls")),
]


# admin customisation
admin.site.site_header = "Freight Back Office"
admin.site.site_title = "Freight"
admin.site.index_title = "Dispatch & Settlement"

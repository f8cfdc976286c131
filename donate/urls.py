from django.urls import path

from donate.views import DonationView, NetworksView

app_name = 'donate'

urlpatterns = [
    path('networks', NetworksView.as_view(), name='networks'),
    path('donate/<str:recipient>/<str:network>', DonationView.as_view(), name='donate'),
]

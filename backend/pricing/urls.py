from django.urls import path
from . import views

app_name = 'pricing'

urlpatterns = [
    path('estimate/', views.estimate_fare, name='estimate-fare'),
    path('configuration/', views.active_configuration, name='active-configuration'),
]

from django.urls import path
from . import views

app_name = 'bookings'

urlpatterns = [
    # Customer APIs
    path('', views.create_booking, name='create-booking'),
    path('current/', views.get_current_booking, name='current-booking'),
    path('<int:booking_id>/', views.booking_detail, name='booking-detail'),
    path('<int:booking_id>/cancel/', views.cancel_booking, name='cancel-booking'),
    path('<int:booking_id>/raise-fare/', views.raise_fare, name='raise-fare'),
    path('<int:booking_id>/offers/', views.list_offers, name='list-offers'),
    path('<int:booking_id>/offers/<int:offer_id>/respond/', views.respond_to_offer, name='respond-offer'),
    path('<int:booking_id>/receipt/', views.booking_receipt, name='booking-receipt'),

    # Fare negotiation
    path('<int:booking_id>/negotiation/', views.negotiation_history, name='negotiation-history'),
    path('<int:booking_id>/negotiation/propose/', views.propose_fare, name='propose-fare'),
    path('<int:booking_id>/negotiation/<int:entry_id>/respond/', views.respond_to_proposal, name='respond-proposal'),

    # Driver booking actions
    path('<int:booking_id>/accept/', views.accept_booking, name='accept-booking'),
    path('<int:booking_id>/reject/', views.reject_booking, name='reject-booking'),
    path('<int:booking_id>/offer/', views.submit_offer, name='submit-offer'),
    path('<int:booking_id>/start/', views.start_ride, name='start-ride'),
    path('<int:booking_id>/in-progress/', views.mark_in_progress, name='in-progress'),
    path('<int:booking_id>/complete/', views.complete_ride, name='complete-ride'),
]

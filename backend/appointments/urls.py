from django.urls import path
from . import views

app_name = 'appointments'

urlpatterns = [
    path('', views.appointments, name='appointments'),
    path('<int:appointment_id>/', views.appointment_detail, name='appointment-detail'),
    path('<int:appointment_id>/start/', views.start_appointment, name='start-appointment'),
    path('<int:appointment_id>/complete/', views.complete_appointment, name='complete-appointment'),
    path('<int:appointment_id>/cancel/', views.cancel_appointment, name='cancel-appointment'),
    path('<int:appointment_id>/survey/', views.submit_survey, name='submit-survey'),
]

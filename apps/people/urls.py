# people/urls.py

from django.urls import path
from . import views

app_name = 'people'

urlpatterns = [
    # =============================================================================
    # PEOPLE
    # =============================================================================
    path('', views.person_list, name='person_list'),
    path('<uuid:pk>/', views.person_detail, name='person_detail'),

    # =============================================================================
    # SIBLINGS
    # =============================================================================
    path('<uuid:pk>/siblings/suggestions/', views.sibling_suggestions, name='sibling_suggestions'),
    path('<uuid:pk>/siblings/add/', views.sibling_add, name='sibling_add'),
    path('<uuid:pk>/siblings/<uuid:relationship_pk>/remove/', views.sibling_remove, name='sibling_remove'),
]

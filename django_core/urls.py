from django.urls import path, include

urlpatterns = [
    path('api/', include('repo_app.urls', namespace='repo_app')),
]

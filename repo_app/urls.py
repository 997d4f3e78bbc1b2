from django.urls import path

from . import views

app_name = 'repo_app'

urlpatterns = [
    path('repositories', views.repositories, name='repositories'),
    path('repositories/<str:repository_id>', views.repository_detail, name='repository_detail'),
    path('repositories/<str:repository_id>/refs', views.ref_list, name='ref_list'),
    path('repositories/<str:repository_id>/refs/<path:name>', views.ref_detail, name='ref_detail'),
    path('repositories/<str:repository_id>/objects:missing', views.objects_missing, name='objects_missing'),
    path('repositories/<str:repository_id>/objects', views.object_upload, name='object_upload'),
    path('repositories/<str:repository_id>/objects/<str:digest>', views.object_detail, name='object_detail'),
    path('repositories/<str:repository_id>/commits', views.commit_list, name='commit_list'),
    path('repositories/<str:repository_id>/commits/<str:digest>', views.commit_detail, name='commit_detail'),
    path('repositories/<str:repository_id>/tree', views.tree_view, name='tree'),
    path('repositories/<str:repository_id>/blob/<path:path>', views.blob_view, name='blob'),
]

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('repo_app', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='reference',
            name='message',
            field=models.TextField(blank=True, default=''),
        ),
    ]

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ItemSequence',
            fields=[
                ('name', models.CharField(max_length=32, primary_key=True, serialize=False)),
                ('last_value', models.BigIntegerField(default=0)),
            ],
            options={
                'verbose_name': 'Item Sequence',
                'verbose_name_plural': 'Item Sequences',
            },
        ),
        migrations.CreateModel(
            name='Item',
            fields=[
                ('id', models.BigIntegerField(primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('path', models.TextField(help_text='Logical path: /folder/subfolder/name')),
                ('item_type', models.CharField(choices=[('folder', 'Folder'), ('document', 'Document'), ('image', 'Image'), ('video', 'Video'), ('audio', 'Audio'), ('archive', 'Archive'), ('other', 'Other')], max_length=16)),
                ('size_bytes', models.BigIntegerField(default=0, help_text='File size in bytes, 0 for directories')),
                ('is_directory', models.BooleanField(default=False)),
                ('is_favorite', models.BooleanField(default=False)),
                ('is_public', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.RESTRICT, related_name='children', to='files.item')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Item',
                'verbose_name_plural': 'Items',
                'ordering': ['-is_directory', 'name'],
                'indexes': [
                    models.Index(fields=['user', 'parent'], name='files_item_user_parent_idx'),
                    models.Index(fields=['user', '-updated_at'], name='files_item_user_recent_idx'),
                    models.Index(fields=['user', 'item_type'], name='files_item_user_type_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'parent', 'name'), name='files_item_sibling_unique'),
                    models.UniqueConstraint(condition=models.Q(('parent__isnull', True)), fields=('user', 'name'), name='files_item_root_sibling_unique'),
                    models.CheckConstraint(condition=models.Q(('size_bytes__gte', 0)), name='files_item_size_non_negative'),
                    models.CheckConstraint(condition=models.Q(('is_directory', False), models.Q(('item_type', 'folder'), ('size_bytes', 0)), _connector='OR'), name='files_item_directory_is_empty_folder'),
                ],
            },
        ),
        migrations.CreateModel(
            name='UserQuota',
            fields=[
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='quota', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('quota_bytes', models.BigIntegerField(default=10737418240, help_text='Storage quota limit in bytes')),
            ],
            options={
                'verbose_name': 'User Quota',
                'verbose_name_plural': 'User Quotas',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('quota_bytes__gte', 0)), name='quota_bytes_non_negative'),
                ],
            },
        ),
    ]

import django.db.models.deletion
import django.utils.timezone
import encrypted_fields.fields
import model_utils.fields
from django.conf import settings
from django.db import migrations, models


def base_model_fields():
    return [
        (
            "id",
            models.BigAutoField(
                auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
            ),
        ),
        (
            "created",
            model_utils.fields.AutoCreatedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="created",
            ),
        ),
        (
            "modified",
            model_utils.fields.AutoLastModifiedField(
                db_index=True,
                default=django.utils.timezone.now,
                editable=False,
                verbose_name="modified",
            ),
        ),
        ("meta", models.JSONField(blank=True, default=dict, verbose_name="meta")),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GoogleAccountLink",
            fields=[
                *base_model_fields(),
                ("access_token", encrypted_fields.fields.EncryptedTextField(blank=True)),
                ("refresh_token", encrypted_fields.fields.EncryptedTextField(blank=True)),
                ("expiry", models.DateTimeField(blank=True, null=True)),
                ("scope", models.JSONField(blank=True, default=list)),
                ("managed_calendar_id", models.CharField(blank=True, max_length=255)),
                ("selected_calendar_ids", models.JSONField(blank=True, default=list)),
                (
                    "token_state",
                    models.CharField(
                        choices=[
                            ("valid", "Valid"),
                            ("expiring", "Expiring"),
                            ("refreshing", "Refreshing"),
                            ("unrecoverable", "Unrecoverable"),
                        ],
                        default="valid",
                        max_length=20,
                    ),
                ),
                ("last_refreshed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="google_account_link",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="CalendarSyncState",
            fields=[
                *base_model_fields(),
                ("calendar_id", models.CharField(max_length=255)),
                ("sync_token", models.TextField(blank=True)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("last_full_sync_at", models.DateTimeField(blank=True, null=True)),
                (
                    "channel_id",
                    models.CharField(blank=True, max_length=255, null=True, unique=True),
                ),
                ("resource_id", models.CharField(blank=True, max_length=255)),
                ("channel_expires_at", models.DateTimeField(blank=True, null=True)),
                (
                    "link",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sync_states",
                        to="calendar_integration.googleaccountlink",
                    ),
                ),
            ],
            options={
                "unique_together": {("link", "calendar_id")},
            },
        ),
        migrations.CreateModel(
            name="Calendar",
            fields=[
                *base_model_fields(),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                ("color", models.CharField(default="#4285F4", max_length=7)),
                (
                    "mirror_to_provider",
                    models.BooleanField(
                        default=True,
                        help_text=(
                            "If true, events of this calendar are propagated to the managed "
                            "calendar on the user's linked Google account."
                        ),
                    ),
                ),
                ("is_default", models.BooleanField(default=False)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="calendars",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="CalendarEvent",
            fields=[
                *base_model_fields(),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                ("location", models.CharField(blank=True, max_length=512)),
                ("start_time", models.DateTimeField(db_index=True)),
                ("end_time", models.DateTimeField(db_index=True)),
                ("external_calendar_id", models.CharField(blank=True, max_length=255)),
                (
                    "external_event_id",
                    models.CharField(blank=True, db_index=True, max_length=255),
                ),
                ("external_etag", models.CharField(blank=True, max_length=255)),
                (
                    "calendar",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="calendar_integration.calendar",
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
    ]

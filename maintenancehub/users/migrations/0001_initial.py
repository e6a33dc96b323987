import uuid

import django.contrib.auth.models
import django.contrib.auth.validators
import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.conf import settings
from django.db import migrations
from django.db import models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("name", models.CharField(help_text="Name of the company, e.g. 'Acme Plant 3'", max_length=255)),
                ("slug", models.SlugField(blank=True, unique=True)),
                ("purchased_manager_seats", models.IntegerField(default=0, help_text="Seats purchased for admins and managers.")),
                ("purchased_tech_seats", models.IntegerField(default=0, help_text="Seats purchased for technicians.")),
                ("stripe_customer_id", models.CharField(blank=True, help_text="Stripe Customer ID (cus_xxx).", max_length=255)),
                ("stripe_subscription_id", models.CharField(blank=True, help_text="Stripe Subscription ID (sub_xxx).", max_length=255)),
                ("stripe_manager_item_id", models.CharField(blank=True, help_text="Subscription item (si_xxx) for manager seats.", max_length=255)),
                ("stripe_tech_item_id", models.CharField(blank=True, help_text="Subscription item (si_xxx) for tech seats.", max_length=255)),
                ("subscription_status", models.CharField(choices=[("none", "None"), ("pending_payment", "Pending Payment"), ("active", "Active"), ("trialing", "Trialing"), ("past_due", "Past Due"), ("canceled", "Canceled")], default="none", max_length=20)),
                ("payment_restricted", models.BooleanField(default=False, help_text="Set when a payment failed or the subscription ended.")),
                ("package_type", models.CharField(choices=[("demo", "Demo"), ("paid", "Paid")], default="demo", max_length=10)),
                ("demo_expires_at", models.DateTimeField(blank=True, null=True)),
                ("is_live", models.BooleanField(default=False, help_text="True once the company has paid and left the demo.")),
            ],
            options={
                "verbose_name_plural": "companies",
                "indexes": [
                    models.Index(fields=["stripe_customer_id"], name="users_compa_stripe__c1a2e4_idx"),
                    models.Index(fields=["stripe_subscription_id"], name="users_compa_stripe__5b7d90_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(default=False, help_text="Designates that this user has all permissions without explicitly assigning them.", verbose_name="superuser status")),
                ("username", models.CharField(error_messages={"unique": "A user with that username already exists."}, help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.", max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name="username")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                ("is_staff", models.BooleanField(default=False, help_text="Designates whether the user can log into this admin site.", verbose_name="staff status")),
                ("is_active", models.BooleanField(default=True, help_text="Designates whether this user should be treated as active. Unselect this instead of deleting accounts.", verbose_name="active")),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("name", models.CharField(blank=True, max_length=255, verbose_name="Name of User")),
                ("role", models.CharField(choices=[("admin", "Admin"), ("manager", "Manager"), ("tech", "Technician")], default="tech", max_length=16)),
                ("company", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="members", to="users.company")),
                ("groups", models.ManyToManyField(blank=True, help_text="The groups this user belongs to. A user will get all permissions granted to each of their groups.", related_name="user_set", related_query_name="user", to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(blank=True, help_text="Specific permissions for this user.", related_name="user_set", related_query_name="user", to="auth.permission", verbose_name="user permissions")),
            ],
            options={
                "verbose_name": "user",
                "verbose_name_plural": "users",
                "abstract": False,
            },
            managers=[
                ("objects", django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name="Invitation",
            fields=[
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("email", models.EmailField(max_length=254)),
                ("role", models.CharField(choices=[("admin", "Admin"), ("manager", "Manager"), ("tech", "Technician")], default="tech", max_length=16)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("accepted", "Accepted"), ("expired", "Expired")], default="pending", max_length=16)),
                ("expires_at", models.DateTimeField()),
                ("token", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="invitations", to="users.company")),
                ("invited_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sent_invitations", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created"],
                "indexes": [
                    models.Index(fields=["company", "status"], name="users_invit_company_8e3f21_idx"),
                ],
            },
        ),
    ]

from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('clients', '0001_initial'),
        ('tenants', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='PointsConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_active', models.BooleanField(default=True)),
                ('earn_rate', models.DecimalField(decimal_places=2, default=Decimal('1000.00'), help_text='Currency units spent per point earned.', max_digits=12)),
                ('min_purchase_for_points', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sales below this total earn no points.', max_digits=14)),
                ('max_points_per_transaction', models.PositiveIntegerField(blank=True, help_text='Cap on points earned by a single sale. Empty means no cap.', null=True)),
                ('points_expiry_days', models.PositiveIntegerField(default=365)),
                ('point_value', models.DecimalField(decimal_places=2, default=Decimal('1.00'), help_text='Currency value of one point when redeemed.', max_digits=12)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('tenant', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='points_config', to='tenants.tenant')),
            ],
            options={
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('earn_rate__gt', 0)), name='points_config_earn_rate_positive'),
                    models.CheckConstraint(condition=models.Q(('points_expiry_days__gte', 1)), name='points_config_expiry_min_one'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PointsTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sale_id', models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ('type', models.CharField(choices=[('earned', 'Earned'), ('used', 'Used'), ('expired', 'Expired'), ('adjustment', 'Adjustment')], max_length=16)),
                ('points', models.IntegerField(help_text='Signed: positive credits, negative debits.')),
                ('balance_after', models.IntegerField()),
                ('description', models.CharField(max_length=255)),
                ('idempotency_key', models.CharField(blank=True, max_length=128, null=True)),
                ('metadata', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='points_transactions', to='clients.client')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='points_transactions', to=settings.AUTH_USER_MODEL)),
                ('purchase', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='points_transactions', to='clients.clientpurchase')),
                ('tenant', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='points_transactions', to='tenants.tenant')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['tenant', 'type'], name='points_tx_tenant_type_idx'),
                    models.Index(fields=['tenant', 'client', 'created_at'], name='points_tx_client_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('points', 0), _negated=True), name='points_tx_non_zero'),
                    models.CheckConstraint(condition=models.Q(('balance_after__gte', 0)), name='points_tx_balance_non_negative'),
                    models.UniqueConstraint(condition=models.Q(('idempotency_key__isnull', False)), fields=('tenant', 'idempotency_key'), name='uniq_points_tx_idempotency_key'),
                ],
            },
        ),
    ]

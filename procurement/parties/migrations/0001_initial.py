from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Partner',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('partner_code', models.CharField(max_length=50, unique=True)),
                ('name', models.CharField(max_length=200)),
                ('partner_type', models.CharField(choices=[('supplier', 'Supplier'), ('customer', 'Customer'), ('both', 'Supplier and Customer')], default='supplier', max_length=20)),
                ('contact_person', models.CharField(blank=True, max_length=200)),
                ('phone', models.CharField(blank=True, max_length=20)),
                ('email', models.EmailField(blank=True, max_length=254)),
                ('postal_code', models.CharField(blank=True, max_length=10)),
                ('address', models.TextField(blank=True)),
                ('payment_terms', models.PositiveIntegerField(default=30, help_text='Payment terms in days')),
                ('notes', models.TextField(blank=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'partners',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['partner_type', 'is_active'], name='idx_partner_type_active'),
                ],
            },
        ),
    ]

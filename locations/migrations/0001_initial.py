from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Country',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('code', models.CharField(help_text='ISO 3166-1 alpha-2 country code', max_length=2, unique=True)),
            ],
            options={
                'ordering': ['name'],
                'verbose_name_plural': 'countries',
            },
        ),
        migrations.CreateModel(
            name='GazetteerPlace',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('geonameid', models.PositiveIntegerField(help_text='GeoNames identifier', unique=True)),
                ('name', models.CharField(max_length=200)),
                ('ascii_name', models.CharField(blank=True, max_length=200)),
                ('normalized_name', models.CharField(db_index=True, max_length=200)),
                ('normalized_ascii_name', models.CharField(blank=True, db_index=True, max_length=200)),
                ('country_code', models.CharField(db_index=True, max_length=2)),
                ('admin1_code', models.CharField(blank=True, help_text='State/region code', max_length=20)),
                ('feature_code', models.CharField(blank=True, help_text='GeoNames feature code (PPL, PPLA, ...)', max_length=10)),
                ('latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('population', models.PositiveBigIntegerField(blank=True, null=True)),
            ],
            options={
                'ordering': ['country_code', 'name'],
                'indexes': [
                    models.Index(fields=['country_code', 'normalized_name'], name='gazetteer_country_name_idx'),
                    models.Index(fields=['country_code', 'normalized_ascii_name'], name='gazetteer_country_ascii_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='City',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text="City name (e.g., 'Kraków')", max_length=255)),
                ('slug', models.SlugField(blank=True, max_length=255)),
                ('latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('alternate_names', models.JSONField(blank=True, default=list, help_text='Other spellings, merged city names')),
                ('discovery_enabled', models.BooleanField(db_index=True, default=False)),
                ('discovery_config', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('country', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='cities', to='locations.country')),
            ],
            options={
                'ordering': ['name'],
                'verbose_name_plural': 'cities',
                'indexes': [
                    models.Index(fields=['country', 'name'], name='city_country_name_idx'),
                ],
            },
        ),
    ]

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('locations', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Venue',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text="Venue name (e.g., 'Piętro Niżej')", max_length=255)),
                ('slug', models.SlugField(blank=True, max_length=255)),
                ('address', models.CharField(blank=True, help_text='Free-text address as scraped', max_length=500)),
                ('latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True)),
                ('venue_type', models.CharField(choices=[('venue', 'Venue'), ('city', 'City-level placeholder'), ('region', 'Region-level placeholder'), ('online', 'Online'), ('tbd', 'To be announced')], default='venue', max_length=20)),
                ('source', models.CharField(blank=True, help_text="Source that created the venue (e.g., 'karnet')", max_length=100)),
                ('provider_ids', models.JSONField(blank=True, default=dict, help_text='Per-source external identifiers')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('city', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='venues', to='locations.city')),
            ],
            options={
                'indexes': [
                    models.Index(fields=['city', 'latitude', 'longitude'], name='venue_city_lat_lng_idx'),
                    models.Index(fields=['latitude', 'longitude'], name='venue_lat_lng_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VenueDuplicateExclusion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('venue_1', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to='venues.venue')),
                ('venue_2', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='+', to='venues.venue')),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('venue_1', 'venue_2'), name='unique_venue_exclusion_pair'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VenueMergeAudit',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('source_venue_id', models.BigIntegerField(help_text='ID of the deleted venue')),
                ('merge_reason', models.CharField(default='manual', max_length=50)),
                ('similarity_score', models.FloatField(blank=True, null=True)),
                ('distance_meters', models.FloatField(blank=True, null=True)),
                ('events_reassigned', models.PositiveIntegerField(default=0)),
                ('source_venue_snapshot', models.JSONField(default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('target_venue', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='merge_audits', to='venues.venue')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
    ]

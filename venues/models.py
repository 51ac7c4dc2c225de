"""
Venue models.

Venues are created by scraping pipelines and admin tooling and belong to
a City. Physical venues always carry a valid coordinate pair so they can
take part in proximity-based duplicate detection.
"""

from django.core.exceptions import ValidationError
from django.db import models
from django.utils.text import slugify

from locations.services import validate_coordinates


class VenueType(models.TextChoices):
    VENUE = 'venue', 'Venue'
    CITY = 'city', 'City-level placeholder'
    REGION = 'region', 'Region-level placeholder'
    ONLINE = 'online', 'Online'
    TBD = 'tbd', 'To be announced'


# Types that represent a real place and therefore require coordinates
PHYSICAL_VENUE_TYPES = frozenset({VenueType.VENUE.value, VenueType.CITY.value, VenueType.REGION.value})


class Venue(models.Model):
    """
    Venue with free-text address and coordinates.

    Duplicate detection compares venues within the same city by distance
    and name similarity; see venues.deduplication.
    """

    name = models.CharField(max_length=255, help_text="Venue name (e.g., 'Piętro Niżej')")
    slug = models.SlugField(max_length=255, db_index=True, blank=True)

    address = models.CharField(max_length=500, blank=True, help_text="Free-text address as scraped")
    city = models.ForeignKey('locations.City', on_delete=models.PROTECT, related_name='venues')

    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    venue_type = models.CharField(max_length=20, choices=VenueType.choices, default=VenueType.VENUE)

    # Source tracking
    source = models.CharField(max_length=100, blank=True, help_text="Source that created the venue (e.g., 'karnet')")
    provider_ids = models.JSONField(default=dict, blank=True, help_text="Per-source external identifiers")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['city', 'latitude', 'longitude'], name='venue_city_lat_lng_idx'),
            models.Index(fields=['latitude', 'longitude'], name='venue_lat_lng_idx'),
        ]

    def __str__(self) -> str:
        """Return human-readable venue string."""
        return f"{self.name} ({self.city_id})"

    @property
    def is_physical(self) -> bool:
        return self.venue_type in PHYSICAL_VENUE_TYPES

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def clean(self):
        errors = validate_coordinates(self.latitude, self.longitude)

        if self.is_physical and self.latitude is None and self.longitude is None:
            errors['latitude'] = ["Latitude is required for physical venues."]
            errors['longitude'] = ["Longitude is required for physical venues."]

        if self.name and not self.name.strip():
            errors['name'] = ["Venue name cannot be blank."]

        if errors:
            raise ValidationError(errors)

    def snapshot(self) -> dict:
        """JSON-safe copy of the venue, kept in merge audits."""
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'address': self.address,
            'city_id': self.city_id,
            'latitude': str(self.latitude) if self.latitude is not None else None,
            'longitude': str(self.longitude) if self.longitude is not None else None,
            'venue_type': self.venue_type,
            'source': self.source,
            'provider_ids': self.provider_ids,
        }

    def save(self, *args, **kwargs):
        """Auto-generate slug if not provided."""
        if not self.slug and self.name:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)


class VenueDuplicateExclusion(models.Model):
    """
    Marks two venues as "not duplicates".

    Pairs are stored with the lower id first so each pair has exactly one row.
    """

    venue_1 = models.ForeignKey(Venue, on_delete=models.CASCADE, related_name='+')
    venue_2 = models.ForeignKey(Venue, on_delete=models.CASCADE, related_name='+')
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['venue_1', 'venue_2'], name='unique_venue_exclusion_pair'),
        ]

    def __str__(self) -> str:
        return f"{self.venue_1_id} != {self.venue_2_id}"

    @staticmethod
    def normalize_pair(venue_id_1: int, venue_id_2: int) -> tuple:
        return (venue_id_1, venue_id_2) if venue_id_1 <= venue_id_2 else (venue_id_2, venue_id_1)

    def save(self, *args, **kwargs):
        self.venue_1_id, self.venue_2_id = self.normalize_pair(self.venue_1_id, self.venue_2_id)
        super().save(*args, **kwargs)


class VenueMergeAudit(models.Model):
    """Record of a venue merged into another, with a snapshot of the removed venue."""

    source_venue_id = models.BigIntegerField(help_text="ID of the deleted venue")
    target_venue = models.ForeignKey(Venue, on_delete=models.SET_NULL, null=True, related_name='merge_audits')
    merge_reason = models.CharField(max_length=50, default='manual')
    similarity_score = models.FloatField(null=True, blank=True)
    distance_meters = models.FloatField(null=True, blank=True)
    events_reassigned = models.PositiveIntegerField(default=0)
    source_venue_snapshot = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f"{self.source_venue_id} -> {self.target_venue_id}"

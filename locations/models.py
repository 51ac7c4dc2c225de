"""
Country, city and gazetteer models.

City is the locality every venue belongs to. It also carries the embedded
discovery configuration (enabled sources, schedule, per-source stats).
GazetteerPlace holds the GeoNames reference data city names are checked
against.
"""

import re

from django.core.exceptions import ValidationError
from django.db import models
from django.utils.text import slugify


def normalize_for_matching(name: str) -> str:
    """
    Normalize a location name for matching.

    - Lowercase
    - Remove "city of", "town of", etc. prefixes
    - Remove punctuation except hyphens
    - Collapse whitespace
    """
    if not name:
        return ""

    result = name.lower().strip()

    # Remove "city of", "town of", etc. prefixes
    result = re.sub(r'^(city|town|village|borough|township)\s+of\s+', '', result)

    # Remove punctuation except hyphens (for compound names like "Winston-Salem")
    result = re.sub(r'[^\w\s-]', '', result)

    # Collapse whitespace
    result = re.sub(r'\s+', ' ', result)

    return result.strip()


class Country(models.Model):
    """Country keyed by ISO 3166-1 alpha-2 code."""

    name = models.CharField(max_length=100)
    code = models.CharField(max_length=2, unique=True, help_text="ISO 3166-1 alpha-2 country code")

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'countries'

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.upper()
        super().save(*args, **kwargs)


class City(models.Model):
    """
    City-level locality that venues belong to.

    discovery_config is present whenever discovery_enabled is set; its
    "sources" map is keyed by source name so a single source entry can be
    updated without rewriting its siblings.
    """

    name = models.CharField(max_length=255, help_text="City name (e.g., 'Kraków')")
    slug = models.SlugField(max_length=255, db_index=True, blank=True)
    country = models.ForeignKey(Country, on_delete=models.PROTECT, related_name='cities')

    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    alternate_names = models.JSONField(default=list, blank=True, help_text="Other spellings, merged city names")

    discovery_enabled = models.BooleanField(default=False, db_index=True)
    discovery_config = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'cities'
        indexes = [
            models.Index(fields=['country', 'name'], name='city_country_name_idx'),
        ]

    def __str__(self) -> str:
        return self.name

    def clean(self):
        from locations.services import validate_coordinates

        errors = validate_coordinates(self.latitude, self.longitude)
        if self.name and not self.name.strip():
            errors['name'] = ["City name cannot be blank."]
        if self.discovery_enabled and self.discovery_config is None:
            errors['discovery_config'] = ["Discovery config is required when discovery is enabled."]
        if errors:
            raise ValidationError(errors)

    def save(self, *args, **kwargs):
        """Auto-generate slug from name."""
        if not self.slug and self.name:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)


class GazetteerPlace(models.Model):
    """
    Reference place imported from a GeoNames cities dump.

    A city name is considered real when it matches the normalized name or
    ASCII name of a place in the same country.
    """

    geonameid = models.PositiveIntegerField(unique=True, help_text="GeoNames identifier")

    name = models.CharField(max_length=200)
    ascii_name = models.CharField(max_length=200, blank=True)
    normalized_name = models.CharField(max_length=200, db_index=True)
    normalized_ascii_name = models.CharField(max_length=200, db_index=True, blank=True)

    country_code = models.CharField(max_length=2, db_index=True)
    admin1_code = models.CharField(max_length=20, blank=True, help_text="State/region code")
    feature_code = models.CharField(max_length=10, blank=True, help_text="GeoNames feature code (PPL, PPLA, ...)")

    latitude = models.DecimalField(max_digits=9, decimal_places=6)
    longitude = models.DecimalField(max_digits=9, decimal_places=6)
    population = models.PositiveBigIntegerField(null=True, blank=True)

    class Meta:
        ordering = ['country_code', 'name']
        indexes = [
            models.Index(fields=['country_code', 'normalized_name'], name='gazetteer_country_name_idx'),
            models.Index(fields=['country_code', 'normalized_ascii_name'], name='gazetteer_country_ascii_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.name}, {self.country_code}"

    def save(self, *args, **kwargs):
        """Auto-generate normalized names."""
        if self.name and not self.normalized_name:
            self.normalized_name = normalize_for_matching(self.name)
        if self.ascii_name and not self.normalized_ascii_name:
            self.normalized_ascii_name = normalize_for_matching(self.ascii_name)
        super().save(*args, **kwargs)

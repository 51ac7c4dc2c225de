"""
Event model.

Only the parts of an event the data-quality core needs: the venue it takes
place at (for event counts and merge reassignment) and basic identity.
"""

from django.db import models


class Event(models.Model):
    title = models.CharField(max_length=255)
    external_id = models.CharField(max_length=255, blank=True)
    source = models.CharField(max_length=100, blank=True, help_text="Source that scraped the event")

    venue = models.ForeignKey(
        'venues.Venue',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='events',
    )

    start_time = models.DateTimeField()
    end_time = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['start_time']

    def __str__(self) -> str:
        return self.title

"""
Allow-list of discovery sources.

Each source is a scraper plugin run by the scraper workers as a Celery task.
The task name doubles as the worker identifier in the execution ledger
(django-celery-results' TaskResult.task_name).

Scope decides what a run covers:
    city      one run per city, task kwargs carry city_id
    country   one run covers a whole country
    regional  one run covers a fixed region (a metro area or a few cities)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from discovery.exceptions import InvalidSource


class SourceScope(str, Enum):
    CITY = 'city'
    COUNTRY = 'country'
    REGIONAL = 'regional'


@dataclass(frozen=True)
class DiscoverySource:
    name: str
    display_name: str
    scope: SourceScope
    task_name: str

    @property
    def is_city_scoped(self) -> bool:
        return self.scope == SourceScope.CITY


SOURCES: Dict[str, DiscoverySource] = {
    source.name: source
    for source in (
        DiscoverySource('bandsintown', 'Bandsintown', SourceScope.CITY, 'scrapers.bandsintown.sync'),
        DiscoverySource('ticketmaster', 'Ticketmaster', SourceScope.CITY, 'scrapers.ticketmaster.sync'),
        DiscoverySource('resident-advisor', 'Resident Advisor', SourceScope.CITY, 'scrapers.resident_advisor.sync'),
        DiscoverySource('karnet', 'Karnet Kraków', SourceScope.REGIONAL, 'scrapers.karnet.sync'),
        DiscoverySource('repertuary', 'Repertuary', SourceScope.REGIONAL, 'scrapers.repertuary.sync'),
        DiscoverySource('sortiraparis', 'Sortiraparis', SourceScope.REGIONAL, 'scrapers.sortiraparis.sync'),
        DiscoverySource('waw4free', 'Waw4Free', SourceScope.REGIONAL, 'scrapers.waw4free.sync'),
        DiscoverySource('cinema-city', 'Cinema City', SourceScope.COUNTRY, 'scrapers.cinema_city.sync'),
        DiscoverySource('week_pl', 'Restaurant Week', SourceScope.COUNTRY, 'scrapers.week_pl.sync'),
        DiscoverySource('pubquiz-pl', 'PubQuiz.pl', SourceScope.COUNTRY, 'scrapers.pubquiz_pl.sync'),
        DiscoverySource('question-one', 'Question One', SourceScope.COUNTRY, 'scrapers.question_one.sync'),
        DiscoverySource('inquizition', 'Inquizition', SourceScope.COUNTRY, 'scrapers.inquizition.sync'),
        DiscoverySource('geeks-who-drink', 'Geeks Who Drink', SourceScope.COUNTRY, 'scrapers.geeks_who_drink.sync'),
        DiscoverySource('speed-quizzing', 'Speed Quizzing', SourceScope.COUNTRY, 'scrapers.speed_quizzing.sync'),
    )
}

_SOURCES_BY_TASK: Dict[str, DiscoverySource] = {source.task_name: source for source in SOURCES.values()}


def valid_source_names() -> List[str]:
    return sorted(SOURCES)


def is_valid_source(name: str) -> bool:
    return name in SOURCES


def get_source(name: str) -> DiscoverySource:
    """
    Look up a source by name.

    Raises:
        InvalidSource: name is not in the allow-list
    """
    try:
        return SOURCES[name]
    except (KeyError, TypeError):
        raise InvalidSource(name)


def source_for_task(task_name: Optional[str]) -> Optional[DiscoverySource]:
    """The source a Celery task name belongs to, if any."""
    return _SOURCES_BY_TASK.get(task_name)

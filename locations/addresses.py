"""
Address parsing and city-name heuristics.

Scraped venues often arrive with a free-text address and, in the bad
cases, with part of that address stored as the city name. This module
pulls the city out of an address using a per-country parser table and
flags strings that look like addresses or postcodes rather than places.
"""

import re
from functools import partial
from typing import Callable, Dict, FrozenSet, List, Optional, Pattern, Tuple

from locations.exceptions import NoCityFound

# US state abbreviations and full names
STATE_ABBREVIATIONS = {
    'alabama': 'AL', 'alaska': 'AK', 'arizona': 'AZ', 'arkansas': 'AR', 'california': 'CA',
    'colorado': 'CO', 'connecticut': 'CT', 'delaware': 'DE', 'florida': 'FL', 'georgia': 'GA',
    'hawaii': 'HI', 'idaho': 'ID', 'illinois': 'IL', 'indiana': 'IN', 'iowa': 'IA',
    'kansas': 'KS', 'kentucky': 'KY', 'louisiana': 'LA', 'maine': 'ME', 'maryland': 'MD',
    'massachusetts': 'MA', 'michigan': 'MI', 'minnesota': 'MN', 'mississippi': 'MS', 'missouri': 'MO',
    'montana': 'MT', 'nebraska': 'NE', 'nevada': 'NV', 'new hampshire': 'NH', 'new jersey': 'NJ',
    'new mexico': 'NM', 'new york': 'NY', 'north carolina': 'NC', 'north dakota': 'ND', 'ohio': 'OH',
    'oklahoma': 'OK', 'oregon': 'OR', 'pennsylvania': 'PA', 'rhode island': 'RI', 'south carolina': 'SC',
    'south dakota': 'SD', 'tennessee': 'TN', 'texas': 'TX', 'utah': 'UT', 'vermont': 'VT',
    'virginia': 'VA', 'washington': 'WA', 'west virginia': 'WV', 'wisconsin': 'WI', 'wyoming': 'WY',
    'district of columbia': 'DC'
}

US_STATE_CODES = frozenset(STATE_ABBREVIATIONS.values())
US_STATE_NAMES = frozenset(STATE_ABBREVIATIONS)
AU_STATE_CODES = frozenset({'NSW', 'VIC', 'QLD', 'WA', 'SA', 'TAS', 'ACT', 'NT'})

UK_COUNTRY_NAMES = frozenset({'uk', 'united kingdom', 'great britain', 'england', 'scotland', 'wales', 'northern ireland'})
US_COUNTRY_NAMES = frozenset({'usa', 'united states', 'united states of america'})
AU_COUNTRY_NAMES = frozenset({'australia'})

UK_POSTCODE = r'[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}'
US_ZIP = r'\d{5}(?:-\d{4})?'
AU_POSTCODE = r'\d{4}'
# Polish 31-019, Swedish 123 45, plain 4-5 digit codes
GENERIC_POSTCODE = r'\d{2}-\d{3}|\d{3}\s\d{2}|\d{4,5}'

# Street suffix patterns
STREET_SUFFIXES = r'(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|Circle|Cir|Place|Pl|Square|Sq|Highway|Hwy|Parkway|Pkwy|Trail|Trl)'

# Minimum alphanumeric characters for an extracted city name
MIN_CITY_CHARS = 3

_LEADING_HOUSE_NUMBER = re.compile(r'^\d+[A-Za-z]?(?:\s*[-/]\s*\d+[A-Za-z]?)?\s+\S')
_TRAILING_STREET_SUFFIX = re.compile(rf'\s{STREET_SUFFIXES}\.?$', re.IGNORECASE)
_UK_POSTCODE_ANYWHERE = re.compile(rf'\b{UK_POSTCODE}\b', re.IGNORECASE)
_BARE_POSTCODE = re.compile(rf'^(?:{UK_POSTCODE}|{US_ZIP}|[\d\s-]+)$', re.IGNORECASE)


def _trailing(pattern: str) -> Pattern:
    return re.compile(rf'(?:^|[\s,])(?:{pattern})$', re.IGNORECASE)


def _leading(pattern: str) -> Pattern:
    return re.compile(rf'^(?:{pattern})(?:$|[\s,])', re.IGNORECASE)


def _strip_segment(
    segment: str,
    postcodes: Tuple[Pattern, ...],
    region_codes: FrozenSet[str],
    country_names: FrozenSet[str],
) -> str:
    """
    Remove postcode, region-code and country tokens from a segment.

    Trailing tokens are stripped repeatedly so "Collie WA 6225" becomes
    "Collie". Region codes only match in upper case, so "Washington" never
    loses its tail while "Beverly Hills CA" does.
    """
    result = segment.strip()

    changed = True
    while result and changed:
        changed = False

        for pattern in postcodes:
            stripped = pattern.sub('', result).strip(' ,')
            if stripped != result:
                result, changed = stripped, True

        words = result.split()
        if words and words[-1] in region_codes:
            result, changed = ' '.join(words[:-1]), True
            continue

        lowered = result.lower()
        for country in country_names:
            if lowered == country:
                result, changed = '', True
                break
            if lowered.endswith(' ' + country):
                result, changed = result[:-len(country)].strip(' ,'), True
                break

    return result


def _is_meaningful(candidate: str) -> bool:
    alnum = [ch for ch in candidate if ch.isalnum()]
    return len(alnum) >= MIN_CITY_CHARS and any(ch.isalpha() for ch in alnum)


def _parse_address(
    address: Optional[str],
    postcode: str,
    region_codes: FrozenSet[str] = frozenset(),
    country_names: FrozenSet[str] = frozenset(),
    leading_postcode: bool = False,
    region_names: FrozenSet[str] = frozenset(),
) -> str:
    """
    Extract the city from a comma-delimited "Street, City[, Region Postcode]" address.

    Walks the segments from the end, skipping any that are nothing but
    postcode/region/country tokens. A segment that is only a full region
    name ("Texas 78701") is skipped too while an earlier segment remains,
    so "New York, New York 10001" still yields "New York". The first
    segment is always treated as the street and is never returned.
    """
    if not address or not address.strip():
        raise NoCityFound(address)

    parts = [part.strip() for part in address.split(',') if part.strip()]
    if len(parts) < 2:
        raise NoCityFound(address)

    postcodes = [_trailing(postcode)]
    if leading_postcode:
        postcodes.append(_leading(postcode))

    candidates = parts[1:]
    for position in range(len(candidates) - 1, -1, -1):
        candidate = _strip_segment(candidates[position], tuple(postcodes), region_codes, country_names)
        if position > 0 and candidate.lower() in region_names:
            continue
        if candidate:
            break
    else:
        raise NoCityFound(address)

    if not _is_meaningful(candidate):
        raise NoCityFound(address)

    return candidate


_parse_uk = partial(_parse_address, postcode=UK_POSTCODE, country_names=UK_COUNTRY_NAMES)

# Strategy table: ISO country code -> parser
ADDRESS_PARSERS: Dict[str, Callable[[Optional[str]], str]] = {
    'GB': _parse_uk,
    'UK': _parse_uk,
    'IE': partial(_parse_address, postcode=r'[A-Z]\d[\dW]\s?[A-Z\d]{4}', country_names=frozenset({'ireland'})),
    'US': partial(
        _parse_address,
        postcode=US_ZIP,
        region_codes=US_STATE_CODES,
        region_names=US_STATE_NAMES,
        country_names=US_COUNTRY_NAMES,
    ),
    'AU': partial(_parse_address, postcode=AU_POSTCODE, region_codes=AU_STATE_CODES, country_names=AU_COUNTRY_NAMES),
}

# European style "Street, 31-019 City"
_parse_generic = partial(_parse_address, postcode=GENERIC_POSTCODE, leading_postcode=True)


def extract_city_from_address(address: Optional[str], country_code: Optional[str]) -> str:
    """
    Extract a city name from a free-text venue address.

    Examples:
        ("10-16 Botchergate, Carlisle, CA1 1PE", "GB") -> "Carlisle"
        ("425 Burwood Hwy, Wantirna South VIC 3152", "AU") -> "Wantirna South"
        ("9100 Wilshire Blvd, Beverly Hills, CA 90210", "US") -> "Beverly Hills"

    Raises:
        NoCityFound: address is empty, has fewer than two comma-separated
            parts, or the extracted name has fewer than 3 meaningful characters
    """
    parser = ADDRESS_PARSERS.get((country_code or '').upper(), _parse_generic)
    return parser(address)


def looks_like_street_address(name: str) -> bool:
    """True for strings with a leading house number or a trailing thoroughfare suffix."""
    name = name.strip()
    return bool(_LEADING_HOUSE_NUMBER.match(name) or _TRAILING_STREET_SUFFIX.search(name))


def detect_data_quality_issues(name: Optional[str]) -> List[str]:
    """
    Return data quality issue codes for a city name.

    Codes:
        street_address: leading house number or thoroughfare suffix
        postcode: the whole name is a postcode/ZIP
        postcode_in_name: 4+ digits or a UK postcode inside the name
        state_abbreviation: starts with a 2-3 letter region code ("NSW Sydney")
        short_with_numbers: 5 characters or fewer and contains a digit
    """
    if not name or not name.strip():
        return []

    name = name.strip()
    issues = []

    if looks_like_street_address(name):
        issues.append('street_address')

    if _BARE_POSTCODE.match(name):
        issues.append('postcode')
    elif re.search(r'\d{4,}', name) or _UK_POSTCODE_ANYWHERE.search(name):
        issues.append('postcode_in_name')

    if re.match(r'^[A-Z]{2,3}\s', name):
        issues.append('state_abbreviation')

    if len(name) <= 5 and re.search(r'\d', name):
        issues.append('short_with_numbers')

    return issues

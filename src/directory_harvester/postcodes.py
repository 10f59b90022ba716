"""Australian postcode catalog.

Valid postcodes are generated from the Australia Post range table, grouped by
state or territory. Postcodes are always four-character, zero-padded strings.
"""

from __future__ import annotations

from .errors import ConfigError
from .models import SearchUnit
from .validation import normalize_postcode

POSTCODE_RANGES: dict[str, tuple[tuple[int, int], ...]] = {
    "NSW": ((1000, 1999), (2000, 2599), (2619, 2898), (2921, 2999)),
    "ACT": ((200, 299), (2600, 2618), (2900, 2920)),
    "VIC": ((3000, 3999), (8000, 8999)),
    "QLD": ((4000, 4999), (9000, 9999)),
    "SA": ((5000, 5999),),
    "WA": ((6000, 6797), (6999, 6999)),
    "TAS": ((7000, 7999),),
    "NT": ((800, 999),),
    # Norfolk Island, Christmas Island, Cocos Islands
    "EXTERNAL": ((2899, 2899), (6798, 6798), (6799, 6799)),
}

MAJOR_CITY_POSTCODES = (
    "2000",  # Sydney
    "3000",  # Melbourne
    "4000",  # Brisbane
    "5000",  # Adelaide
    "6000",  # Perth
    "7000",  # Hobart
    "0800",  # Darwin
    "2600",  # Canberra
)


class PostcodeCatalog:
    """Ordered postcode sequence with region lookup and grouping helpers."""

    def __init__(self, ranges: dict[str, tuple[tuple[int, int], ...]] | None = None) -> None:
        self._ranges = ranges if ranges is not None else POSTCODE_RANGES
        entries: list[tuple[int, str, str]] = []
        for region, spans in self._ranges.items():
            for start, end in spans:
                for number in range(start, end + 1):
                    entries.append((number, normalize_postcode(number), region))
        entries.sort()
        self._codes = [code for _, code, _ in entries]
        self._regions = {code: region for _, code, region in entries}

    @property
    def regions(self) -> list[str]:
        return list(self._ranges)

    def all_units(self) -> list[str]:
        return list(self._codes)

    def units_for_region(self, region: str) -> list[str]:
        wanted = region.strip().upper()
        return [code for code in self._codes if self._regions[code] == wanted]

    def region_of(self, code: str | int) -> str | None:
        try:
            return self._regions.get(normalize_postcode(code))
        except ConfigError:
            return None

    def is_valid(self, code: str | int) -> bool:
        return self.region_of(code) is not None

    def sample_units(self, per_region: int = 5) -> list[str]:
        """Evenly spaced postcodes from every region except external territories."""
        samples: list[str] = []
        for region in self._ranges:
            if region == "EXTERNAL":
                continue
            codes = self.units_for_region(region)
            step = max(1, len(codes) // per_region)
            for index in range(per_region):
                if index * step >= len(codes):
                    break
                samples.append(codes[index * step])
        return sorted(samples)

    def major_city_units(self) -> list[str]:
        return list(MAJOR_CITY_POSTCODES)

    def statistics(self) -> dict[str, int]:
        stats = {region: len(self.units_for_region(region)) for region in self._ranges}
        stats["TOTAL"] = len(self._codes)
        return stats

    def to_units(self, codes: list[str]) -> list[SearchUnit]:
        """Wrap postcodes as search units, attaching each one's region."""
        return [
            SearchUnit(postcode=normalize_postcode(code), region=self.region_of(code))
            for code in codes
        ]

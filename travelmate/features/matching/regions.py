"""
travelmate/features/matching/regions.py

Region affinity: partial-credit destination matching through a fixed
place -> region table. Keys are case-sensitive; unknown places are their
own region.
"""

from types import MappingProxyType
from typing import Mapping

# Built once at import; never mutated afterwards.
REGION_TABLE: Mapping[str, str] = MappingProxyType({
    # Capital area
    "서울": "Sudogwon",
    "경기": "Sudogwon",
    "인천": "Sudogwon",
    "Seoul": "Sudogwon",
    "Gyeonggi": "Sudogwon",
    "Incheon": "Sudogwon",
    # Southeast
    "부산": "Yeongnam",
    "대구": "Yeongnam",
    "울산": "Yeongnam",
    "경남": "Yeongnam",
    "경북": "Yeongnam",
    "Busan": "Yeongnam",
    "Daegu": "Yeongnam",
    "Ulsan": "Yeongnam",
    "Gyeongnam": "Yeongnam",
    "Gyeongbuk": "Yeongnam",
    # Southwest
    "광주": "Honam",
    "전북": "Honam",
    "전남": "Honam",
    "Gwangju": "Honam",
    "Jeonbuk": "Honam",
    "Jeonnam": "Honam",
    # Central
    "대전": "Hoseo",
    "세종": "Hoseo",
    "충북": "Hoseo",
    "충남": "Hoseo",
    "Daejeon": "Hoseo",
    "Sejong": "Hoseo",
    "Chungbuk": "Hoseo",
    "Chungnam": "Hoseo",
    # East
    "강원": "Gwandong",
    "Gangwon": "Gwandong",
    # Island
    "제주": "Jeju",
    "Jeju": "Jeju",
})


class RegionAffinity:
    """Pure lookup over REGION_TABLE."""

    def __init__(self, table: Mapping[str, str] = REGION_TABLE):
        self._table = MappingProxyType(dict(table))

    def region_of(self, place: str) -> str:
        return self._table.get(place, place)

    def same_region(self, place_a: str, place_b: str) -> bool:
        return self.region_of(place_a) == self.region_of(place_b)


default_region_affinity = RegionAffinity()

# incidentwatch/geo_lookup.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd
from rapidfuzz import fuzz, process

import config


def _norm(s: str) -> str:
    s = "" if s is None else str(s)
    s = s.strip().lower()
    # remove simple punctuation that often appears in headlines
    s = re.sub(r"[\,\.\;\:\(\)\[\]\{\}\!\?\"\'`]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


class GeoIndexGeocoder:
    """
    Offline geocoder over a GeoNames alias index (alias, lat, lon, country_code, population),
    built by scripts/build_geo_index.py. Exact alias match first, then fuzzy.
    No network, so no pacing between calls.
    """

    min_interval = 0.0

    def __init__(self, index: Union[str, Path, pd.DataFrame, None] = None, score_cutoff: int = 90):
        self.score_cutoff = score_cutoff
        if isinstance(index, pd.DataFrame):
            df = index.copy()
        else:
            path = Path(index or config.GEO_INDEX_PATH)
            if not path.exists():
                raise FileNotFoundError(f"Missing geo index: {path}. Run scripts/build_geo_index.py first.")
            df = pd.read_csv(path, dtype={"alias": str, "country_code": str})

        df["alias_norm"] = df["alias"].fillna("").astype(str).apply(_norm)
        df = df[df["alias_norm"] != ""].copy()
        if "population" in df.columns:
            df = df.sort_values("population", ascending=False)
        self._df = df.drop_duplicates(subset=["alias_norm"]).reset_index(drop=True)
        self._choices: List[str] = self._df["alias_norm"].tolist()
        self._exact: Dict[str, int] = {a: i for i, a in enumerate(self._choices)}

    def _hit(self, idx: int) -> Dict[str, float]:
        row = self._df.iloc[idx]
        return {"lat": float(row["lat"]), "lng": float(row["lon"])}

    def lookup(self, name: str) -> Optional[Dict[str, float]]:
        key = _norm(name)
        if not key:
            return None
        if key in self._exact:
            return self._hit(self._exact[key])
        match = process.extractOne(key, self._choices, scorer=fuzz.WRatio, score_cutoff=self.score_cutoff)
        if match:
            _, _, idx = match
            return self._hit(idx)
        return None

    def geocode(self, query: str) -> Optional[Dict[str, float]]:
        # "location, subdivision, country": most specific part first
        for part in (query or "").split(","):
            hit = self.lookup(part)
            if hit:
                return hit
        return None

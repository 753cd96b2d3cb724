import argparse
from pathlib import Path

import pandas as pd

import config

GEONAMES_COLUMNS = [
    "geonameid","name","asciiname","alternatenames","lat","lon",
    "feature_class","feature_code","country_code","cc2",
    "admin1","admin2","admin3","admin4","population",
    "elevation","dem","timezone","moddate"
]


def build_index(src: Path) -> pd.DataFrame:
    df = pd.read_csv(src, sep="\t", names=GEONAMES_COLUMNS, dtype=str)

    df["lat"] = df["lat"].astype(float)
    df["lon"] = df["lon"].astype(float)
    df["population"] = df["population"].fillna("0").astype(int)

    # expand alternates
    alt = df[["alternatenames","lat","lon","country_code","population"]].copy()
    alt["alternatenames"] = alt["alternatenames"].fillna("")
    alt = alt.assign(alias=alt["alternatenames"].str.split(",")).explode("alias")
    alt = alt[alt["alias"].str.strip() != ""]

    base = df[["name","lat","lon","country_code","population"]].rename(columns={"name":"alias"})
    geo = pd.concat([base, alt[["alias","lat","lon","country_code","population"]]])

    # most populous place wins an ambiguous alias
    geo = geo.sort_values("population", ascending=False, kind="stable")
    return geo.drop_duplicates(subset=["alias"])


def main():
    parser = argparse.ArgumentParser(description="Build the offline geocoding index from a GeoNames dump.")
    parser.add_argument("--src", default="data/cities15000.txt", help="GeoNames citiesNNNN.txt")
    parser.add_argument("--out", default=str(config.GEO_INDEX_PATH))
    args = parser.parse_args()

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    geo = build_index(Path(args.src))
    geo.to_csv(out, index=False)

    print(f"Geo index saved → {out} ({len(geo)} rows)")


if __name__ == "__main__":
    main()

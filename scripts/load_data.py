# scripts/load_data.py - Seed the location catalog from a CSV or JSON export
import argparse
import asyncio
import json
import sys
from pathlib import Path

import pandas as pd
from tqdm import tqdm

# Add project root to Python path
project_root = Path(__file__).resolve().parent.parent
sys.path.append(str(project_root))

from adapters.database import SqlCatalogRepository, close_db, init_db
from domain.models import Location

DATA_DIR = Path("data")

LIST_COLUMNS = ("keywords", "filters", "photos", "media_links")
TEXT_COLUMNS = ("description", "postal_code", "price_range", "tips", "social_media")

# Column names used by earlier exports of the directory
LEGACY_COLUMNS = {
    "locationName": "name",
    "locationAddress": "address",
    "locationDescription": "description",
    "placeCategory": "category",
    "postalCode": "postal_code",
    "priceRange": "price_range",
    "socialmedia": "social_media",
    "mediaLink": "media_links",
}


def read_locations(path: Path) -> pd.DataFrame:
    """Read a CSV or JSON file into a frame with the catalog's column names"""
    if path.suffix.lower() == ".json":
        df = pd.read_json(path)
    else:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df = df.rename(columns=LEGACY_COLUMNS)

    missing = {"name", "address", "category"} - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(sorted(missing))}")
    return df


def _as_list(value) -> list:
    """Lists may arrive as JSON arrays, comma-separated strings or real lists"""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if not text:
        return []
    if text.startswith("["):
        return [str(v).strip() for v in json.loads(text) if str(v).strip()]
    return [item.strip() for item in text.split(",") if item.strip()]


def _as_dict(value) -> dict:
    if isinstance(value, dict):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)) or not str(value).strip():
        return {}
    return json.loads(str(value))


def row_to_location(row: dict) -> Location:
    kwargs = {
        "name": str(row["name"]).strip(),
        "address": str(row["address"]).strip(),
        "category": str(row["category"]).strip(),
    }
    for column in TEXT_COLUMNS:
        value = row.get(column)
        if value is not None and not (isinstance(value, float) and pd.isna(value)) and str(value).strip():
            kwargs[column] = str(value).strip()
    for column in LIST_COLUMNS:
        if column in row:
            kwargs[column] = _as_list(row[column])
    if "hours" in row:
        kwargs["hours"] = _as_dict(row["hours"])
    return Location(**kwargs)


async def load_locations(path: Path) -> int:
    print(f"📊 Loading locations from {path}...")
    df = read_locations(path)
    print(f"   Found {len(df):,} rows")

    session_factory = await init_db()
    repository = SqlCatalogRepository(session_factory)
    loaded = 0
    try:
        for record in tqdm(df.to_dict(orient="records"), desc="locations"):
            await repository.save(row_to_location(record))
            loaded += 1
    finally:
        await close_db()

    print(f"✅ Loaded {loaded:,} locations")
    return loaded


def main():
    parser = argparse.ArgumentParser(description="Seed the location catalog")
    parser.add_argument("path", nargs="?", default=str(DATA_DIR / "locations.csv"))
    args = parser.parse_args()

    try:
        asyncio.run(load_locations(Path(args.path)))
    except Exception as e:
        print(f"❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

if __name__ == "__main__":
    main()

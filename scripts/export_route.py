from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.route.model import RouteModel, build_route_model, load_waypoints


def _html(model: RouteModel, name: str) -> str:
    coords = model.coordinates()
    payload = json.dumps([[lat, lon] for lat, lon in coords])
    center_lat = sum(c[0] for c in coords) / len(coords)
    center_lon = sum(c[1] for c in coords) / len(coords)
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Route Model: {name}</title>
  <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" crossorigin="" />
  <style>
    body {{ margin: 0; font-family: "Segoe UI", sans-serif; background: #0c111f; color: #e8ecff; }}
    #head {{ padding: 10px 14px; border-bottom: 1px solid #1f2a44; }}
    #map {{ width: 100vw; height: calc(100vh - 48px); }}
    .meta {{ color: #9eb1de; font-size: 13px; }}
  </style>
</head>
<body>
  <div id="head">
    <div><strong>{name}</strong>
      <span class="meta">{model.segment_count} segments, {model.total_length:.0f} m, max {model.segment_max_size:g} m</span>
    </div>
  </div>
  <div id="map"></div>
  <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
  <script>
    const coords = {payload};
    const map = L.map('map').setView([{center_lat}, {center_lon}], 12);
    L.tileLayer('https://tile.openstreetmap.org/{{z}}/{{x}}/{{y}}.png', {{
      maxZoom: 18,
      attribution: '&copy; OpenStreetMap contributors'
    }}).addTo(map);
    L.polyline(coords, {{ color: '#4ecdc4', weight: 3 }}).addTo(map);
    coords.forEach(c => L.circleMarker(c, {{ radius: 1, color: '#ff7a59', weight: 0, fillOpacity: 0.8 }}).addTo(map));
  </script>
</body>
</html>"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the densified route model and export it for inspection")
    parser.add_argument("--route", default="data/routes/seattle_bainbridge.csv")
    parser.add_argument("--segment-size", type=float, default=10.0, help="metres")
    parser.add_argument("--output-dir", default="outputs/route")
    args = parser.parse_args()

    src = ROOT / args.route
    model = build_route_model(load_waypoints(src), args.segment_size)

    out_dir = ROOT / args.output_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / f"{src.stem}_densified.csv"
    html_path = out_dir / f"{src.stem}_map.html"
    model.to_frame().to_csv(csv_path, index=False, encoding="utf-8")
    html_path.write_text(_html(model, src.stem), encoding="utf-8")
    print(f"[done] segments={model.segment_count} length_m={model.total_length:.1f}")
    print(f"[done] csv={csv_path}")
    print(f"[done] map={html_path}")


if __name__ == "__main__":
    main()

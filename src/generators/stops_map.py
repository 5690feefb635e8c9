"""
Stops Map Generator
===================
Renders the override table as a folium map for eyeballing merge results.

Features:
- One toggleable layer per source
- Effective values: manual `*_override` columns win over fetched ones
- A short heading tick showing each stop's icon rotation
"""

from typing import Dict, List, Optional, Sequence

import folium

from .base import BaseGenerator
from ..config import DEFAULT_MAP_CENTER, DEFAULT_ZOOM, ID_COLUMN, ROTATION_COLUMN
from ..data.override_table import OverrideTable, effective_value
from ..data.sources import SOURCES, Source, owner_of
from ..utils.geo import get_bounds, offset_point

SOURCE_COLORS = {
    'tbilisi': '#377eb8',
    'rustavi': '#e41a1c',
}

HEADING_TICK_METRES = 25


def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def stop_marker_data(record: Dict[str, str]) -> Optional[dict]:
    """
    Effective id/name/position/rotation for one table record.

    Returns None when the stop has no usable coordinates.
    """
    lat = _to_float(effective_value(record, 'lat'))
    lon = _to_float(effective_value(record, 'lon'))
    if lat is None or lon is None:
        return None

    name = (effective_value(record, 'name_en') or effective_value(record, 'name_ka')
            or effective_value(record, 'name') or record[ID_COLUMN])
    return {
        'id': record[ID_COLUMN],
        'name': name,
        'lat': lat,
        'lon': lon,
        'rotation': _to_float(effective_value(record, ROTATION_COLUMN)),
        'merge_parent': record.get('mergeParent') or '',
    }


class StopsMapGenerator(BaseGenerator):
    """Generator for the override table preview map."""

    output_filename = "stops_map.html"

    def __init__(self, table: Optional[OverrideTable] = None, sources: Sequence[Source] = SOURCES):
        super().__init__(table)
        self.sources = sources
        self.skipped = 0

    def generate(self) -> str:
        """Generate the stops map HTML."""

        self._log_progress("Collecting stop positions...")
        layers = self._build_layers()

        total = sum(len(stops) for stops in layers.values())
        self._log_progress(f"Generating HTML with {total} stops ({self.skipped} without coordinates)...")
        return self._render(layers)

    def _build_layers(self) -> Dict[str, List[dict]]:
        layers: Dict[str, List[dict]] = {source.id: [] for source in self.sources}
        self.skipped = 0

        for record in self.table.records():
            marker = stop_marker_data(record)
            if marker is None:
                self.skipped += 1
                continue
            owner = owner_of(record[ID_COLUMN], self.sources)
            layers.setdefault(owner.id if owner else 'other', []).append(marker)

        return layers

    def _render(self, layers: Dict[str, List[dict]]) -> str:
        m = folium.Map(location=list(DEFAULT_MAP_CENTER), zoom_start=DEFAULT_ZOOM, prefer_canvas=True)
        points = []

        for layer_name, stops in layers.items():
            color = SOURCE_COLORS.get(layer_name, '#999999')
            group = folium.FeatureGroup(name=f"{layer_name.title()} ({len(stops)})")

            for stop in stops:
                points.append((stop['lat'], stop['lon']))
                popup_text = f"<b>{stop['name']}</b><br>ID: {stop['id']}"
                if stop['rotation'] is not None:
                    popup_text += f"<br>Rotation: {stop['rotation']:g}&deg;"
                if stop['merge_parent']:
                    popup_text += f"<br>Merges into: {stop['merge_parent']}"

                folium.CircleMarker(
                    location=[stop['lat'], stop['lon']],
                    radius=4,
                    color=color,
                    fill=True,
                    fill_opacity=0.6,
                    popup=folium.Popup(popup_text, max_width=300)
                ).add_to(group)

                if stop['rotation'] is not None:
                    tip = offset_point(stop['lat'], stop['lon'], stop['rotation'], HEADING_TICK_METRES)
                    folium.PolyLine(
                        locations=[[stop['lat'], stop['lon']], list(tip)],
                        color=color,
                        weight=2,
                    ).add_to(group)

            group.add_to(m)

        if points:
            (min_lat, min_lon), (max_lat, max_lon) = get_bounds(points)
            m.fit_bounds([[min_lat, min_lon], [max_lat, max_lon]])

        folium.LayerControl(collapsed=False).add_to(m)
        return m.get_root().render()

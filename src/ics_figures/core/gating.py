"""
Hierarchical gating of sorter event tables.

A gating strategy is a tree of gates. Each gate selects events by channel
values, and an event belongs to a population only if it also belongs to the
parent population. Gate definitions are read from JSON, e.g.

    [
      {"name": "cells", "parent": null, "type": "rectangle",
       "channels": ["FSC-A", "SSC-A"], "bounds": [[2e4, 2.5e5], [1e4, 2e5]]},
      {"name": "singlets", "parent": "cells", "type": "polygon",
       "channels": ["FSC-A", "FSC-H"], "vertices": [[0, 0], ...]},
      {"name": "G2M", "parent": "singlets", "type": "threshold",
       "channel": "DAPI-A", "threshold": 1.6, "above": true}
    ]
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from matplotlib.path import Path as MplPath
from pandas import DataFrame, Series

ROOT = "root"


def _check_channels(events: DataFrame, channels: Sequence[str]) -> None:
    missing = [c for c in channels if c not in events.columns]
    if missing:
        raise KeyError(f"Channels not found in events: {missing}")


@dataclass
class RectangleGate:
    """Axis-aligned range gate on one or more channels."""

    name: str
    parent: Optional[str]
    channels: List[str]
    bounds: List[Tuple[Optional[float], Optional[float]]]

    gate_type = "rectangle"

    def __post_init__(self):
        if len(self.channels) != len(self.bounds):
            raise ValueError(
                f"Gate '{self.name}': {len(self.channels)} channels but "
                f"{len(self.bounds)} bounds"
            )

    def contains(self, events: DataFrame) -> Series:
        _check_channels(events, self.channels)
        mask = pd.Series(True, index=events.index)
        for channel, (low, high) in zip(self.channels, self.bounds):
            if low is not None:
                mask &= events[channel] >= low
            if high is not None:
                mask &= events[channel] <= high
        return mask

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "parent": self.parent,
            "type": self.gate_type,
            "channels": list(self.channels),
            "bounds": [list(b) for b in self.bounds],
        }


@dataclass
class PolygonGate:
    """Polygon gate on two channels."""

    name: str
    parent: Optional[str]
    channels: List[str]
    vertices: List[Tuple[float, float]]

    gate_type = "polygon"

    def __post_init__(self):
        if len(self.channels) != 2:
            raise ValueError(f"Polygon gate '{self.name}' needs two channels")
        if len(self.vertices) < 3:
            raise ValueError(
                f"Polygon gate '{self.name}' needs at least three vertices"
            )

    def contains(self, events: DataFrame) -> Series:
        _check_channels(events, self.channels)
        path = MplPath(np.asarray(self.vertices, dtype=float))
        points = events[list(self.channels)].to_numpy(dtype=float)
        inside = path.contains_points(points)
        return pd.Series(inside, index=events.index)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "parent": self.parent,
            "type": self.gate_type,
            "channels": list(self.channels),
            "vertices": [list(v) for v in self.vertices],
        }


@dataclass
class ThresholdGate:
    """Single-channel threshold, events above (or below) the threshold."""

    name: str
    parent: Optional[str]
    channel: str
    threshold: float
    above: bool = True

    gate_type = "threshold"

    @property
    def channels(self) -> List[str]:
        return [self.channel]

    def contains(self, events: DataFrame) -> Series:
        _check_channels(events, [self.channel])
        if self.above:
            return events[self.channel] > self.threshold
        return events[self.channel] <= self.threshold

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "parent": self.parent,
            "type": self.gate_type,
            "channel": self.channel,
            "threshold": self.threshold,
            "above": self.above,
        }


Gate = Union[RectangleGate, PolygonGate, ThresholdGate]


def gate_from_dict(spec: Dict) -> Gate:
    """
    Build a gate from its dictionary form.

    Parameters
    ----------
    spec : dict
        Must contain "name" and "type"; "parent" defaults to the root.

    Returns
    -------
    Gate
        RectangleGate, PolygonGate or ThresholdGate.
    """
    gate_type = spec.get("type")
    name = spec["name"]
    parent = spec.get("parent")
    if gate_type == "rectangle":
        return RectangleGate(
            name=name,
            parent=parent,
            channels=list(spec["channels"]),
            bounds=[tuple(b) for b in spec["bounds"]],
        )
    if gate_type == "polygon":
        return PolygonGate(
            name=name,
            parent=parent,
            channels=list(spec["channels"]),
            vertices=[tuple(v) for v in spec["vertices"]],
        )
    if gate_type == "threshold":
        return ThresholdGate(
            name=name,
            parent=parent,
            channel=spec["channel"],
            threshold=float(spec["threshold"]),
            above=bool(spec.get("above", True)),
        )
    raise ValueError(f"Unknown gate type '{gate_type}' for gate '{name}'")


@dataclass
class GatingStrategy:
    gates: List[Gate]
    _order: List[str] = field(init=False, repr=False)

    def __post_init__(self):
        names = [g.name for g in self.gates]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate gate names: {duplicates}")
        if ROOT in names:
            raise ValueError(f"'{ROOT}' is reserved for all events")
        by_name = self.by_name
        for gate in self.gates:
            parent = self.parent_of(gate)
            if parent != ROOT and parent not in by_name:
                raise ValueError(
                    f"Gate '{gate.name}' has unknown parent '{parent}'"
                )
        self._order = self._topological_order()

    @property
    def by_name(self) -> Dict[str, Gate]:
        return {g.name: g for g in self.gates}

    @staticmethod
    def parent_of(gate: Gate) -> str:
        return ROOT if gate.parent in (None, ROOT) else gate.parent

    def _topological_order(self) -> List[str]:
        children: Dict[str, List[str]] = {ROOT: []}
        for gate in self.gates:
            children.setdefault(self.parent_of(gate), []).append(gate.name)
        order = []
        stack = list(reversed(children[ROOT]))
        while stack:
            name = stack.pop()
            order.append(name)
            stack.extend(reversed(children.get(name, [])))
        if len(order) != len(self.gates):
            cyclic = sorted(set(g.name for g in self.gates) - set(order))
            raise ValueError(f"Gates not reachable from root (cycle): {cyclic}")
        return order

    @property
    def populations(self) -> List[str]:
        return list(self._order)

    def path(self, population: str) -> List[str]:
        by_name = self.by_name
        if population not in by_name:
            raise KeyError(f"Unknown population '{population}'")
        path = [population]
        parent = self.parent_of(by_name[population])
        while parent != ROOT:
            path.append(parent)
            parent = self.parent_of(by_name[parent])
        return list(reversed(path))

    def apply(self, events: DataFrame) -> DataFrame:
        """
        Evaluate all gates on an event table.

        Returns
        -------
        DataFrame
            Boolean membership, one column per population, indexed like
            events.
        """
        by_name = self.by_name
        membership = {}
        for name in self._order:
            gate = by_name[name]
            mask = gate.contains(events)
            parent = self.parent_of(gate)
            if parent != ROOT:
                mask &= membership[parent]
            membership[name] = mask
        return pd.DataFrame(membership, index=events.index)

    def gate_events(self, events: DataFrame, population: str) -> DataFrame:
        if population == ROOT:
            return events.copy()
        if population not in self.by_name:
            raise KeyError(f"Unknown population '{population}'")
        membership = self.apply(events)
        return events[membership[population]].copy()

    def _stats(self, events: DataFrame) -> List[Dict]:
        membership = self.apply(events)
        by_name = self.by_name
        n_total = len(events)
        records = []
        for name in self._order:
            parent = self.parent_of(by_name[name])
            count = int(membership[name].sum())
            n_parent = (
                n_total if parent == ROOT else int(membership[parent].sum())
            )
            records.append(
                {
                    "population": name,
                    "parent": parent,
                    "count": count,
                    "freq_of_parent": (
                        100.0 * count / n_parent if n_parent > 0 else np.nan
                    ),
                    "freq_of_total": (
                        100.0 * count / n_total if n_total > 0 else np.nan
                    ),
                }
            )
        return records

    def population_stats(
        self,
        events: DataFrame,
        by: Optional[Union[str, List[str]]] = None,
    ) -> DataFrame:
        """
        Event counts and frequencies per population.

        Parameters
        ----------
        events : DataFrame
            Event table.
        by : str or list, optional
            Grouping column(s), e.g. "sample"; statistics are computed per
            group.

        Returns
        -------
        DataFrame
            population, parent, count, freq_of_parent (%), freq_of_total (%)
            and the grouping columns if given.
        """
        if by is None:
            return pd.DataFrame(self._stats(events))
        by_cols = [by] if isinstance(by, str) else list(by)
        _check_channels(events, by_cols)
        frames = []
        for key, group in events.groupby(by_cols):
            key = key if isinstance(key, tuple) else (key,)
            stats_df = pd.DataFrame(self._stats(group))
            for i, (col, value) in enumerate(zip(by_cols, key)):
                stats_df.insert(i, col, value)
            frames.append(stats_df)
        return pd.concat(frames, ignore_index=True)

    def to_dict(self) -> List[Dict]:
        return [g.to_dict() for g in self.gates]


def load_gating_strategy(
    source: Union[str, Path, List[Dict], Dict],
) -> GatingStrategy:
    """
    Load a gating strategy from a JSON file or already parsed JSON.

    A dictionary with a "gates" key is accepted as well as a bare list of
    gate definitions.
    """
    if isinstance(source, (str, Path)):
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError(f"Gating file not found: {source}")
        source = json.loads(source.read_text())
    if isinstance(source, dict):
        source = source["gates"]
    return GatingStrategy([gate_from_dict(spec) for spec in source])

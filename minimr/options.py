"""Options selecting the map and reduce functions a worker runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List

from minimr.coordinator import KeyValue, default_map, default_reduce

MapFunc = Callable[[str, str], List[KeyValue]]
ReduceFunc = Callable[[str, List[str]], str]


@dataclass
class Options:
    map_func: MapFunc = default_map
    reduce_func: ReduceFunc = default_reduce


Option = Callable[[Options], None]


def with_map_func(f: MapFunc) -> Option:
    def apply(options: Options) -> None:
        options.map_func = f

    return apply


def with_reduce_func(f: ReduceFunc) -> Option:
    def apply(options: Options) -> None:
        options.reduce_func = f

    return apply
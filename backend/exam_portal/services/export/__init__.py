"""
Registration export: code map, row rendering, streaming and the chunk client
"""
from .code_map import CodeResolutionMap, load_code_map
from .streamer import ExportFilters, ExportService, REGISTRATION_TYPES, TABLE_ORDER

__all__ = [
    "CodeResolutionMap",
    "load_code_map",
    "ExportFilters",
    "ExportService",
    "REGISTRATION_TYPES",
    "TABLE_ORDER",
]

"""Selection operators."""

from .code_list import CodeListMatch, code_list_select, parse_code_input
from .context import SelectionContext
from .drive_time import DriveTimeSelector, drive_time_select
from .operators import circle_select, point_select, polygon_select

__all__ = [
    "CodeListMatch",
    "DriveTimeSelector",
    "SelectionContext",
    "circle_select",
    "code_list_select",
    "drive_time_select",
    "parse_code_input",
    "point_select",
    "polygon_select",
]

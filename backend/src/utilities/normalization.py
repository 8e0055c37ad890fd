import copy
from typing import Any, Mapping, Optional

from pydantic import StrictStr, TypeAdapter, ValidationError

from schemas import Slide
from .constants import DEFAULT_SETTINGS

_BULLETS = TypeAdapter(list[StrictStr])


def valid_bullets(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    try:
        _BULLETS.validate_python(value)
    except ValidationError:
        return False
    return True


def valid_slides(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    try:
        for item in value:
            Slide.model_validate(item)
    except ValidationError:
        return False
    return True


def normalize(candidate: Any, defaults: Optional[Mapping[str, Any]] = None) -> dict:
    '''
    Fill a candidate document in from the defaults.

    Every key of the candidate overrides the default of the same name, except
    ``bullets`` and ``slides``: those are taken from the candidate only when
    it holds a non-empty list of the right shape, otherwise the default list
    is used whole. Anything that is not a mapping counts as an empty document.
    The result shares no mutable state with either argument.
    '''
    base = DEFAULT_SETTINGS if defaults is None else defaults
    given = candidate if isinstance(candidate, Mapping) else {}

    out = {**base, **given}
    out["bullets"] = given["bullets"] if valid_bullets(given.get("bullets")) else base["bullets"]
    out["slides"] = given["slides"] if valid_slides(given.get("slides")) else base["slides"]
    return copy.deepcopy(out)

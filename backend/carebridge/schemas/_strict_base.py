"""Pydantic bases: results and caller input both reject unknown fields."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Results returned by the coordinators."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Caller input; surrounding whitespace is stripped from strings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)

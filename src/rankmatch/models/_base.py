"""Base model for canonical match entities.

Every canonical model inherits from :class:`RankBaseModel` which provides:

* snake_case field names, accepting both snake_case and camelCase keys on
  input (the backend sends snake_case rows, local callers often camelCase).
* A ``model_validator(mode="before")`` that drops ``None`` values so the
  field default is used instead.
* Frozen instances; updates go through ``model_copy(update=...)``.

Canonical models are always produced by the sanitizers in
:mod:`rankmatch.ingestion.sanitize`, which coerce raw values first, so the
models themselves only carry shape and defaults.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

#: Role label used for seats without an explicit role.
UNASSIGNED_ROLE = "unassigned"


def _validation_alias(field_name: str) -> AliasChoices:
    return AliasChoices(field_name, to_camel(field_name))


class RankBaseModel(BaseModel):
    """Base for canonical match entities."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=AliasGenerator(validation_alias=_validation_alias),
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_none_values(cls, values: Any) -> Any:
        """Let defaults apply for keys explicitly set to ``None``."""
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if value is not None}

"""
Lightweight settings base class in the style of pydantic-settings.

Fields are declared as annotated class attributes, optionally wrapped in
``Field(...)``. Values are resolved from keyword arguments, then environment
variables (field name, upper-cased name and any ``validation_alias``), then
an optional ``.env`` file, then the declared default. Instances are plain
objects, which keeps them trivial to construct in tests.
"""

from __future__ import annotations

import json
import os
import types
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

_TRUTHY = frozenset({"true", "1", "yes", "on"})


class AliasChoices:
    """Several environment variable names accepted for one field."""

    def __init__(self, *choices: str) -> None:
        self.choices = list(choices)

    def __iter__(self):
        return iter(self.choices)


class FieldInfo:
    """Declaration metadata for one settings field."""

    def __init__(
        self,
        default: Any = None,
        description: str = "",
        validation_alias: Optional[Union[str, List[str], AliasChoices]] = None,
        required: bool = False,
    ) -> None:
        self.default = default
        self.description = description
        self.validation_alias = validation_alias
        self.required = required

    def aliases(self) -> List[str]:
        if self.validation_alias is None:
            return []
        if isinstance(self.validation_alias, str):
            return [self.validation_alias]
        return list(self.validation_alias)


def Field(
    default: Any = None,
    *,
    description: str = "",
    validation_alias: Optional[Union[str, List[str], AliasChoices]] = None,
    **kwargs: Any,
) -> Any:
    """Declare a settings field; ``...`` as the default marks it required."""
    required = default is ...
    return FieldInfo(
        default=None if required else default,
        description=description,
        validation_alias=validation_alias,
        required=required,
    )


class SettingsConfigDict:
    """Loader options for a settings class."""

    def __init__(
        self,
        env_file: Optional[str] = None,
        env_file_encoding: str = "utf-8",
        case_sensitive: bool = True,
        extra: str = "forbid",
    ) -> None:
        self.env_file = env_file
        self.env_file_encoding = env_file_encoding
        self.case_sensitive = case_sensitive
        self.extra = extra


class BaseSettings:
    """Base class for settings loaded from the environment."""

    model_config: SettingsConfigDict = SettingsConfigDict()

    def __init__(self, **overrides: Any) -> None:
        file_values = self._read_env_file()

        for name, annotation in get_type_hints(type(self)).items():
            if name.startswith("_") or name == "model_config":
                continue

            declared = getattr(type(self), name, None)
            if isinstance(declared, FieldInfo):
                info = declared
            else:
                info = FieldInfo(default=declared)

            if name in overrides:
                value = overrides[name]
            else:
                value = self._lookup(name, info, file_values)
                if value is None:
                    if info.required:
                        raise ValueError(
                            f"Required field '{name}' not found in environment"
                        )
                    value = info.default

            setattr(self, name, self._coerce(value, annotation))

    def _candidate_names(self, name: str, info: FieldInfo) -> List[str]:
        names = info.aliases() + [name, name.upper()]
        if not self.model_config.case_sensitive:
            names += [candidate.lower() for candidate in names]
        return names

    def _lookup(
        self, name: str, info: FieldInfo, file_values: Dict[str, str]
    ) -> Optional[str]:
        for candidate in self._candidate_names(name, info):
            if candidate in os.environ:
                return os.environ[candidate]
            if candidate in file_values:
                return file_values[candidate]
        return None

    def _read_env_file(self) -> Dict[str, str]:
        env_file = self.model_config.env_file
        if not env_file:
            return {}
        path = Path(env_file)
        if not path.exists():
            return {}

        values: Dict[str, str] = {}
        text = path.read_text(encoding=self.model_config.env_file_encoding)
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip().strip("\"'")
        return values

    def _coerce(self, value: Any, annotation: Any) -> Any:
        """Convert string values from the environment to the annotated type."""
        if value is None or not isinstance(value, str):
            return value

        origin = get_origin(annotation)
        if origin in (Union, types.UnionType):
            inner = [arg for arg in get_args(annotation) if arg is not type(None)]
            return self._coerce(value, inner[0]) if inner else value
        if origin in (list, List):
            if value.startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        if annotation is bool:
            return value.strip().lower() in _TRUTHY
        if annotation is int:
            return int(value)
        if annotation is float:
            return float(value)
        return value

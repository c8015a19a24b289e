"""Request context models.

Raw parameter and override maps arrive from the request-handling layer as
loosely typed JSON. They are coerced at the boundary into ``ParamValue``
instances so that every downstream check can dispatch on an explicit kind
instead of inspecting Python types at runtime.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from decisioncore.exceptions import ValidationException


MAX_OVERRIDE_ENTRIES = 50
MAX_OVERRIDE_KEY_LENGTH = 100
MAX_OVERRIDE_VALUE_LENGTH = 1000
MAX_OVERRIDE_AUDIT_BYTES = 1024


class ParamKind(str, Enum):
    """Kinds of value a parameter or override may carry."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING_LIST = "string_list"


class ParamValue(BaseModel):
    """A typed parameter value.

    Attributes:
        kind: Which of the supported kinds this value is
        value: The Python value, consistent with ``kind``
    """

    model_config = ConfigDict(frozen=True)

    kind: ParamKind
    value: Union[bool, int, float, str, List[str]]

    @classmethod
    def of(cls, raw: Any) -> "ParamValue":
        """Coerce a raw JSON-like value into a ParamValue.

        Args:
            raw: bool, int, float, str, datetime, list of str, or ParamValue

        Returns:
            The typed value

        Raises:
            ValidationException: If the value kind is not supported
        """
        if isinstance(raw, ParamValue):
            return raw
        # bool is a subclass of int, so it must be tested first
        if isinstance(raw, bool):
            return cls(kind=ParamKind.BOOLEAN, value=raw)
        if isinstance(raw, (int, float)):
            return cls(kind=ParamKind.NUMBER, value=raw)
        if isinstance(raw, datetime):
            return cls(kind=ParamKind.STRING, value=raw.isoformat())
        if isinstance(raw, str):
            return cls(kind=ParamKind.STRING, value=raw)
        if isinstance(raw, (list, tuple)):
            if all(isinstance(item, str) for item in raw):
                return cls(kind=ParamKind.STRING_LIST, value=list(raw))
            raise ValidationException(
                "List parameters may only contain strings",
                details={"item_types": sorted({type(i).__name__ for i in raw})},
            )
        raise ValidationException(
            f"Unsupported parameter value type: {type(raw).__name__}",
            details={"type": type(raw).__name__},
        )

    def canonical(self) -> Union[bool, int, float, str, List[str]]:
        """Canonical representation used for hashing.

        Integral floats collapse to ints, strings are stripped and case-folded,
        string lists are case-folded and sorted.
        """
        if self.kind == ParamKind.BOOLEAN:
            return bool(self.value)
        if self.kind == ParamKind.NUMBER:
            number = self.value
            if isinstance(number, float) and number.is_integer():
                return int(number)
            return number
        if self.kind == ParamKind.STRING:
            return str(self.value).strip().casefold()
        return sorted(item.strip().casefold() for item in self.value)

    def as_text(self) -> str:
        """Render the value for placeholder binding."""
        if self.kind == ParamKind.BOOLEAN:
            return "true" if self.value else "false"
        if self.kind == ParamKind.NUMBER:
            return str(self.canonical())
        if self.kind == ParamKind.STRING_LIST:
            return ",".join(self.value)
        return str(self.value)

    def as_list(self) -> List[str]:
        """Treat the value as a list of strings (a single string becomes one entry)."""
        if self.kind == ParamKind.STRING_LIST:
            return list(self.value)
        if self.kind == ParamKind.STRING:
            return [str(self.value)]
        return []

    def is_true(self) -> bool:
        return self.kind == ParamKind.BOOLEAN and self.value is True

    def to_raw(self) -> Any:
        return list(self.value) if self.kind == ParamKind.STRING_LIST else self.value


def _lookup(mapping: Mapping[str, ParamValue], name: str) -> Optional[ParamValue]:
    if name in mapping:
        return mapping[name]
    folded = name.casefold()
    for key, value in mapping.items():
        if key.casefold() == folded:
            return value
    return None


class RequestContext(BaseModel):
    """Immutable context of one decision request.

    Owned by the orchestrator for the lifetime of the request. Tenant and
    organization identifiers are checked by the fingerprint builder; a
    context without them is rejected before any lookup happens.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    organization_id: str
    user_id: Optional[str] = None
    contact_id: Optional[str] = None
    action_type: str
    channel: str = ""
    industry: Optional[str] = None
    risk_band: Optional[str] = None
    parameters: Dict[str, ParamValue] = Field(default_factory=dict)
    user_overrides: Dict[str, ParamValue] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def coerce_parameters(cls, v: Any) -> Dict[str, ParamValue]:
        if v is None:
            return {}
        return {str(k): ParamValue.of(raw) for k, raw in dict(v).items()}

    @field_validator("user_overrides", mode="before")
    @classmethod
    def coerce_overrides(cls, v: Any) -> Dict[str, ParamValue]:
        if v is None:
            return {}
        raw_map = dict(v)
        if len(raw_map) > MAX_OVERRIDE_ENTRIES:
            raise ValidationException(
                f"Too many user overrides (max {MAX_OVERRIDE_ENTRIES})",
                details={"count": len(raw_map)},
            )
        coerced: Dict[str, ParamValue] = {}
        for key, raw in raw_map.items():
            key = str(key)
            if not key.strip() or len(key) > MAX_OVERRIDE_KEY_LENGTH:
                raise ValidationException(
                    f"Override keys must be 1-{MAX_OVERRIDE_KEY_LENGTH} characters",
                    details={"key_length": len(key)},
                )
            value = ParamValue.of(raw)
            if value.kind == ParamKind.STRING and len(value.value) > MAX_OVERRIDE_VALUE_LENGTH:
                raise ValidationException(
                    f"Override value for '{key}' exceeds {MAX_OVERRIDE_VALUE_LENGTH} characters",
                    details={"key": key, "value_length": len(value.value)},
                )
            coerced[key] = value
        return coerced

    @classmethod
    def from_raw(
        cls,
        tenant_id: str,
        organization_id: str,
        action_type: str,
        channel: str = "",
        parameters: Optional[Mapping[str, Any]] = None,
        user_overrides: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> "RequestContext":
        """Build a context from the untyped maps supplied by the calling layer."""
        return cls(
            tenant_id=tenant_id,
            organization_id=organization_id,
            action_type=action_type,
            channel=channel,
            parameters=dict(parameters or {}),
            user_overrides=dict(user_overrides or {}),
            **kwargs,
        )

    def param(self, name: str) -> Optional[ParamValue]:
        return _lookup(self.parameters, name)

    def override(self, name: str) -> Optional[ParamValue]:
        return _lookup(self.user_overrides, name)

    def override_flag(self, name: str) -> bool:
        """True only when the override is present and set to boolean true."""
        value = self.override(name)
        return value is not None and value.is_true()

    def identity(self) -> Dict[str, Optional[str]]:
        """Context identifiers that may be bound into procedure arguments."""
        return {
            "tenant_id": self.tenant_id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "contact_id": self.contact_id,
            "action_type": self.action_type,
            "channel": self.channel,
        }

    def overrides_audit_json(self) -> str:
        """Compact JSON of the override map, truncated for audit storage."""
        payload = json.dumps(
            {k: v.to_raw() for k, v in sorted(self.user_overrides.items())},
            separators=(",", ":"),
            ensure_ascii=False,
        )
        encoded = payload.encode("utf-8")
        if len(encoded) <= MAX_OVERRIDE_AUDIT_BYTES:
            return payload
        return encoded[:MAX_OVERRIDE_AUDIT_BYTES].decode("utf-8", errors="ignore")

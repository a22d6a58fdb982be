from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .time_utils import parse_iso_date, parse_iso_datetime, to_utc_z


# Maximum price: 9,999,999.99
# This prevents nonsensical prices reaching the remote store
MAX_PRICE = 9_999_999.99

KIND_CREATE = "create"
KIND_UPDATE = "update"
KIND_DELETE = "delete"
MUTATION_KINDS = (KIND_CREATE, KIND_UPDATE, KIND_DELETE)

ENTITY_PRODUCT = "product"
ENTITY_TRANSACTION = "transaction"
ENTITY_TYPES = (ENTITY_PRODUCT, ENTITY_TRANSACTION)

TRANSACTION_TYPES = {"in", "out", "adjustment"}


class ValidationError(ValueError):
    """Malformed mutation or setting; never queued."""


@dataclass(frozen=True)
class FieldType:
    kind: str  # "str" | "text" | "int" | "number" | "date" | "datetime"
    max_length: int | None = None
    nullable: bool = True


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - fields: what clients are allowed to set, and how each value is coerced
    - required_on_create: fields required for a create mutation
    """
    fields: dict[str, FieldType]
    required_on_create: set[str] = field(default_factory=set)

    @property
    def writable_fields(self) -> set[str]:
        return set(self.fields)


PRODUCT_POLICY = ModelValidationPolicy(
    fields={
        "name": FieldType("str", max_length=255, nullable=False),
        "sku": FieldType("str", max_length=64),
        "category": FieldType("str", max_length=128),
        "quantity": FieldType("int", nullable=False),
        "reorder_threshold": FieldType("int"),
        "price": FieldType("number"),
        "cost": FieldType("number"),
        "expiry_date": FieldType("date"),
        "unit": FieldType("str", max_length=32),
        "supplier": FieldType("str", max_length=255),
        "notes": FieldType("text"),
    },
    required_on_create={"name"},
)

TRANSACTION_POLICY = ModelValidationPolicy(
    fields={
        "product_id": FieldType("str", max_length=64, nullable=False),
        "type": FieldType("str", max_length=16, nullable=False),
        "quantity": FieldType("int", nullable=False),
        "date": FieldType("datetime"),
        "notes": FieldType("text"),
        "user_id": FieldType("str", max_length=64),
    },
    required_on_create={"product_id", "type", "quantity"},
)

POLICIES = {
    ENTITY_PRODUCT: PRODUCT_POLICY,
    ENTITY_TRANSACTION: TRANSACTION_POLICY,
}


def _coerce_value(key: str, ftype: FieldType, value: Any):
    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if ftype.kind == "int":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{key} must be an integer")
            if "e" in stripped.lower():
                raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
            if "." in stripped:
                raise ValidationError(f"{key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{key} must be an integer, not a decimal")
        raise ValidationError(f"{key} must be an integer")

    if ftype.kind == "number":
        if isinstance(value, bool):
            raise ValidationError(f"{key} must be a number")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                raise ValidationError(f"{key} must be a number")
        raise ValidationError(f"{key} must be a number")

    # Dates are stored as "YYYY-MM-DD" so payloads stay JSON-serializable
    if ftype.kind == "date":
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        return parsed.isoformat() if parsed else None

    if ftype.kind == "datetime":
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return to_utc_z(dt)

    # Strings / Text
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{key} must be a string")
    return str(value).strip()


def validate_payload(*, payload: Any, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Validates + normalizes a mutation payload against the entity policy.
    Returns a cleaned dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be an object")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        ftype = policy.fields[k]

        if raw is None:
            if not ftype.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(k, ftype, raw)

        if ftype.kind in ("str", "text") and not ftype.nullable and val == "":
            raise ValidationError(f"{k} cannot be blank")

        if ftype.max_length and isinstance(val, str) and len(val) > ftype.max_length:
            raise ValidationError(f"{k} exceeds max length {ftype.max_length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by field types alone.
    Keep these small and centralized.
    """
    for key in ("quantity", "reorder_threshold"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    for key in ("price", "cost"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_PRICE:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE:,.2f}")


def enforce_rules_transaction(patch: dict) -> None:
    if "type" in patch and patch["type"] not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(TRANSACTION_TYPES))}")

    if "quantity" in patch:
        qty = patch["quantity"]
        if qty == 0:
            raise ValidationError("quantity must be non-zero")
        if patch.get("type") in ("in", "out") and qty < 0:
            raise ValidationError("quantity must be > 0 for in/out transactions")


RULES = {
    ENTITY_PRODUCT: enforce_rules_product,
    ENTITY_TRANSACTION: enforce_rules_transaction,
}


def validate_mutation(*, kind: str, entity_type: str, payload: Any) -> dict:
    """
    Structural validation for one mutation before it is queued.

    Existence checks (create over an existing entity, update/delete of a
    missing one) need the local store and live in the mutation queue.
    """
    if kind not in MUTATION_KINDS:
        raise ValidationError(f"Unknown mutation kind: {kind!r}")
    if entity_type not in POLICIES:
        raise ValidationError(f"Unknown entity type: {entity_type!r}")

    if kind == KIND_DELETE:
        if payload not in (None, {}):
            raise ValidationError("delete does not accept a payload")
        return {}

    partial = kind == KIND_UPDATE
    patch = validate_payload(payload=payload, policy=POLICIES[entity_type], partial=partial)
    if partial and not patch:
        raise ValidationError("update requires at least one field")

    RULES[entity_type](patch)
    return patch
